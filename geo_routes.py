from flask import Blueprint, jsonify, request

from errors import NotFound, handle_errors
from geo_service import Geocoder

geo_bp = Blueprint('geo', __name__, url_prefix='/api/geo')


@geo_bp.route('/search', methods=['GET'])
@handle_errors('search location')
def search():
    results = Geocoder.from_config().search(request.args.get('q'), limit=request.args.get('limit', 5, type=int))
    return jsonify({'success': True, 'results': results}), 200


@geo_bp.route('/reverse', methods=['GET'])
@handle_errors('look up address')
def reverse():
    result = Geocoder.from_config().reverse(request.args.get('lat'), request.args.get('lng'))
    if result is None:
        raise NotFound('No address found for this location')
    return jsonify({'success': True, 'result': result}), 200
