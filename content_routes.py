from flask import Blueprint, jsonify

from content_service import get_contact_info, list_content
from errors import handle_errors

content_bp = Blueprint('content', __name__, url_prefix='/api/content')


@content_bp.route('/contact', methods=['GET'])
def get_contact():
    return jsonify({'success': True, 'contact': get_contact_info()}), 200


@content_bp.route('/<kind>', methods=['GET'])
@handle_errors('load content')
def get_content(kind):
    """Active sections, FAQs or policies for the public site"""
    items = list_content(kind)
    return jsonify({'success': True, kind: [item.to_dict() for item in items]}), 200
