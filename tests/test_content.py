from conftest import auth


def test_faq_lifecycle(client, admin):
    response = client.post('/api/admin/content/faqs', json={
        'question': 'How do I book?', 'answer': 'Pick a service and send a request.', 'sort_order': 2,
    }, headers=auth(admin.token))
    assert response.status_code == 201
    faq_id = response.get_json()['item']['id']
    client.post('/api/admin/content/faqs', json={'question': 'Is it safe?', 'answer': 'Providers are verified.',
                                                 'sort_order': 1}, headers=auth(admin.token))

    faqs = client.get('/api/content/faqs').get_json()['faqs']
    assert [faq['question'] for faq in faqs] == ['Is it safe?', 'How do I book?']

    response = client.patch(f'/api/admin/content/faqs/{faq_id}', json={'answer': 'Use the search page.'},
                            headers=auth(admin.token))
    assert response.get_json()['item']['answer'] == 'Use the search page.'

    response = client.post(f'/api/admin/content/faqs/{faq_id}/toggle', headers=auth(admin.token))
    assert response.get_json()['item']['is_active'] is False
    assert len(client.get('/api/content/faqs').get_json()['faqs']) == 1
    assert len(client.get('/api/admin/content/faqs', headers=auth(admin.token)).get_json()['faqs']) == 2


def test_content_validation(client, admin):
    assert client.post('/api/admin/content/faqs', json={'question': 'No answer'},
                       headers=auth(admin.token)).status_code == 400

    policy = {'policy_key': 'terms', 'title': 'Terms of Service', 'content': 'Be nice.'}
    assert client.post('/api/admin/content/policies', json=policy, headers=auth(admin.token)).status_code == 201
    assert client.post('/api/admin/content/policies', json=policy, headers=auth(admin.token)).status_code == 400

    assert client.post('/api/admin/content/sections', json={
        'section_key': 'about', 'title': 'About', 'content_type': 'pdf',
    }, headers=auth(admin.token)).status_code == 400

    assert client.get('/api/content/recipes').status_code == 404


def test_content_admin_only(client, customer):
    response = client.post('/api/admin/content/faqs', json={'question': 'Q', 'answer': 'A'},
                           headers=auth(customer.token))
    assert response.status_code == 403


def test_contact_information(client, admin):
    contact = client.get('/api/content/contact').get_json()['contact']
    assert contact['email'] == admin.email

    response = client.put('/api/admin/content/contact', json={'email': 'not-an-email'}, headers=auth(admin.token))
    assert response.status_code == 400

    response = client.put('/api/admin/content/contact', json={
        'email': 'help@taskkarwalo.com', 'phone': '042-111-222', 'address': 'Gulberg, Lahore',
    }, headers=auth(admin.token))
    assert response.status_code == 200

    contact = client.get('/api/content/contact').get_json()['contact']
    assert contact['email'] == 'help@taskkarwalo.com'
    assert contact['address'] == 'Gulberg, Lahore'
