import logging
import math

import requests
from flask import current_app

from errors import MarketplaceError, ValidationError

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3

# (name, max distance in meters, priority)
DISTANCE_ZONES = (
    ('Very Close', 2000, 10),
    ('Close', 5000, 7),
    ('Moderate', 10000, 5),
    ('Far', 20000, 2),
)
FALLBACK_ZONE = ('Very Far', None, 0)


def haversine_distance(lat1, lon1, lat2, lon2):
    """Great-circle distance between two points, in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def format_distance(meters):
    if meters < 1000:
        return f'{round(meters)}m'
    return f'{meters / 1000:.1f}km'


def distance_zone(meters):
    for zone in DISTANCE_ZONES:
        if meters <= zone[1]:
            return zone
    return FALLBACK_ZONE


def parse_coordinates(lat, lng):
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError('Latitude and longitude must be numbers')
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationError('Coordinates are out of range')
    return lat, lng


class GeocoderError(MarketplaceError):
    status_code = 502


class Geocoder:
    """Thin client for the Nominatim search and reverse endpoints"""

    def __init__(self, base_url, user_agent, country=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.user_agent = user_agent
        self.country = country
        self.timeout = timeout

    @classmethod
    def from_config(cls, config=None):
        config = config or current_app.config
        return cls(
            config['GEOCODER_URL'],
            config['GEOCODER_USER_AGENT'],
            country=config.get('GEOCODER_COUNTRY'),
            timeout=config.get('GEOCODER_TIMEOUT', 10),
        )

    def _get(self, endpoint, params):
        params = dict(params, format='json')
        try:
            response = requests.get(
                f'{self.base_url}/{endpoint}',
                params=params,
                headers={'User-Agent': self.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("[GEO] %s request failed: %s", endpoint, e)
            raise GeocoderError('Location service is unavailable, please try again')

    def search(self, query, limit=5):
        query = (query or '').strip()
        if not query:
            raise ValidationError('Search query is required')

        params = {'q': query, 'limit': limit, 'addressdetails': 1}
        if self.country:
            params['countrycodes'] = self.country
        results = self._get('search', params)
        return [
            {
                'display_name': item.get('display_name'),
                'lat': float(item['lat']),
                'lng': float(item['lon']),
                'type': item.get('type'),
            }
            for item in results
            if 'lat' in item and 'lon' in item
        ]

    def reverse(self, lat, lng):
        lat, lng = parse_coordinates(lat, lng)
        result = self._get('reverse', {'lat': lat, 'lon': lng, 'addressdetails': 1})
        if not result or 'error' in result:
            return None
        return {
            'display_name': result.get('display_name'),
            'lat': lat,
            'lng': lng,
            'address': result.get('address', {}),
        }
