"""Mock media platform API for offline contract testing.

This mock server implements the platform endpoints exercised by the harness:
- /api/coupon: list, create, get, update, delete, search by code
- /api/coupon-group: group list and subgroups of a group
- /api/category: list, create, get, update, delete, media association, image
- /api/media: list with filters

Every response uses the platform envelope {"status": "OK"|"ERROR", "data": ...}
and follows the same quirks as the real backend: a missing coupon is
200 + ERROR + null, a duplicate custom code on a non-reusable coupon is
silently replaced, and an update to a code that is already taken keeps the
original code while applying the other fields.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from flask import Flask, request, jsonify

# Mock data storage
COUPONS: Dict[str, Dict[str, Any]] = {}  # coupon_id -> coupon
GROUPS: Dict[str, Dict[str, Any]] = {}  # group_id -> {_id, name, date_created}
SUBGROUPS: Dict[str, Dict[str, Any]] = {}  # subgroup_id -> {_id, group, name, date_created}
CATEGORIES: Dict[str, Dict[str, Any]] = {}  # category_id -> category
MEDIA: Dict[str, Dict[str, Any]] = {}  # media_id -> media

# Default test credentials
MOCK_TOKEN = "test-api-token"

DISCOUNT_TYPES = ("percent", "amount")
_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,40}$")


def _object_id() -> str:
    return secrets.token_hex(12)


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _ok(data: Any, status: int = 200):
    return jsonify({"status": "OK", "data": data}), status


def _error(data: Any, status: int = 200):
    return jsonify({"status": "ERROR", "data": data}), status


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValueError(value)


def _parse_date(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_number(value: str) -> int | float:
    number = float(value)
    return int(number) if number.is_integer() else number


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or _object_id()[:8]


def _generate_code() -> str:
    while True:
        code = secrets.token_hex(4).upper()
        if _coupon_by_code(code) is None:
            return code


def _coupon_by_code(code: str) -> Optional[Dict[str, Any]]:
    for coupon in COUPONS.values():
        if coupon['code'] == code:
            return coupon
    return None


def _paginate(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    args = request.args
    limit = args.get('limit', type=int)
    offset = args.get('offset', type=int)
    page = args.get('page', type=int)
    if offset is None and page and limit:
        offset = (page - 1) * limit
    records = records[offset or 0:]
    if limit is not None and limit >= 0:
        records = records[:limit]
    return records


def _sorted(records: List[Dict[str, Any]], default_key: str) -> List[Dict[str, Any]]:
    key = request.args.get('sort', default_key)
    reverse = request.args.get('order', 'asc').lower() == 'desc'
    return sorted(records, key=lambda r: str(r.get(key, '')).lower(), reverse=reverse)


def _coupon_view(coupon: Dict[str, Any]) -> Dict[str, Any]:
    view = dict(coupon)
    group = GROUPS.get(coupon['group'])
    # Group arrives embedded, subgroup as a bare id.
    view['group'] = {'_id': coupon['group'], 'name': group['name'] if group else None}
    return view


def _category_view(category: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in category.items() if key != 'media'}


def _media_summary(media: Dict[str, Any]) -> Dict[str, Any]:
    return {'_id': media['_id'], 'id': media['id'], 'title': media['title'], 'type': media['type']}


def _validate_coupon_form(form) -> Optional[str]:
    """Return an error message for a malformed create form, else None."""
    if not form.get('group'):
        return 'group is required'
    for field in ('valid_from', 'valid_to'):
        try:
            _parse_date(form.get(field, ''))
        except ValueError:
            return f'{field} is not a valid date'
    try:
        _parse_bool(form.get('is_reusable', 'false'))
        _parse_bool(form.get('payment_required', 'false'))
    except ValueError as exc:
        return f'invalid boolean: {exc}'
    for field in ('max_use', 'customer_max_use', 'quantity'):
        raw = form.get(field, '1')
        if not raw.isdigit() or int(raw) < 1:
            return f'{field} must be a positive integer'
    discount_type = form.get('discount_type', 'percent')
    if discount_type not in DISCOUNT_TYPES:
        return f'discount_type must be one of {", ".join(DISCOUNT_TYPES)}'
    try:
        if discount_type == 'percent':
            percent = _parse_number(form.get('percent', '0'))
            if not 0 < percent <= 100:
                return 'percent must be between 1 and 100'
        else:
            _parse_number(form.get('amount', ''))
    except ValueError:
        return f'{discount_type} is not a number'
    custom_code = form.get('custom_code')
    if custom_code and not _CODE_PATTERN.match(custom_code):
        return 'custom_code contains invalid characters'
    return None


def _apply_coupon_fields(coupon: Dict[str, Any], form) -> None:
    for field in ('detail', 'valid_from', 'valid_to', 'discount_type', 'type', 'type_code'):
        if form.get(field) is not None:
            coupon[field] = form[field]
    for field in ('max_use', 'customer_max_use'):
        if form.get(field, '').isdigit():
            coupon[field] = int(form[field])
    for field in ('amount', 'percent'):
        if form.get(field):
            coupon[field] = _parse_number(form[field])
    for field in ('is_reusable', 'payment_required'):
        if form.get(field) is not None:
            coupon[field] = _parse_bool(form[field])


def create_mock_api_app() -> Flask:
    """Create and configure the mock platform API Flask app."""
    app = Flask(__name__)
    app.config['TESTING'] = True

    @app.before_request
    def check_token():
        token = request.headers.get('X-API-Token') or request.args.get('token')
        if token != MOCK_TOKEN:
            return _error('INVALID_TOKEN', 401)
        return None

    @app.errorhandler(404)
    def not_found(_exc):
        return _error('NOT_FOUND', 404)

    # ---- coupons -------------------------------------------------------------
    @app.route('/api/coupon', methods=['GET'])
    def list_coupons():
        records = list(COUPONS.values())
        subgroup = request.args.get('subgroup')
        if subgroup:
            records = [c for c in records if c['subgroup'] == subgroup]
        search = request.args.get('search')
        if search:
            records = [c for c in records if search.lower() in c['code'].lower()]
        day = request.args.get('date')
        if day:
            records = [c for c in records if c['date_created'].startswith(day)]
        records = _paginate(_sorted(records, 'date_created'))
        return _ok([_coupon_view(c) for c in records])

    @app.route('/api/coupon', methods=['POST'])
    def create_coupon():
        form = request.form
        problem = _validate_coupon_form(form)
        if problem:
            return _error(problem, 400)

        group_id = form['group']
        if group_id not in GROUPS:
            return _error('GROUP_NOT_FOUND')

        reusable = _parse_bool(form.get('is_reusable', 'false'))
        quantity = int(form.get('quantity', '1'))
        custom_code = form.get('custom_code')
        if custom_code and _coupon_by_code(custom_code) is not None:
            if reusable:
                return _error('COUPON_CODE_ALREADY_EXISTS', 400)
            custom_code = None

        subgroup = seed_subgroup(group_id)
        created = []
        for index in range(quantity):
            coupon = {
                '_id': _object_id(),
                'group': group_id,
                'subgroup': subgroup['_id'],
                'code': custom_code if custom_code and index == 0 else _generate_code(),
                'date_created': _now(),
                'is_used': False,
                'is_valid': True,
                'metadata': form.get('metadata'),
            }
            _apply_coupon_fields(coupon, form)
            COUPONS[coupon['_id']] = coupon
            created.append(_coupon_view(coupon))
        return _ok(created)

    @app.route('/api/coupon/<coupon_id>', methods=['GET'])
    def get_coupon(coupon_id: str):
        coupon = COUPONS.get(coupon_id)
        if coupon is None:
            return _error(None)
        return _ok(_coupon_view(coupon))

    @app.route('/api/coupon/<coupon_id>', methods=['POST'])
    def update_coupon(coupon_id: str):
        coupon = COUPONS.get(coupon_id)
        if coupon is None:
            return _error(None)
        form = request.form
        try:
            _apply_coupon_fields(coupon, form)
        except ValueError as exc:
            return _error(f'invalid value: {exc}', 400)
        requested = form.get('custom_code')
        # A code held by another coupon is ignored without telling the caller.
        if requested and _coupon_by_code(requested) is None:
            coupon['code'] = requested
        return _ok(_coupon_view(coupon))

    @app.route('/api/coupon/<coupon_id>', methods=['DELETE'])
    def delete_coupon(coupon_id: str):
        if COUPONS.pop(coupon_id, None) is None:
            return _error('COUPON_NOT_FOUND')
        return _ok('COUPON_DELETED')

    @app.route('/api/coupon/<code>/search', methods=['GET'])
    def search_coupon(code: str):
        coupon = _coupon_by_code(code)
        if coupon is None:
            return _error(None)
        return _ok(_coupon_view(coupon))

    # ---- coupon groups -------------------------------------------------------
    @app.route('/api/coupon-group', methods=['GET'])
    def list_groups():
        groups = []
        for group in GROUPS.values():
            total = sum(1 for c in COUPONS.values() if c['group'] == group['_id'])
            groups.append(dict(group, coupon_total=total))
        return _ok(groups)

    @app.route('/api/coupon-group/<group_id>', methods=['GET'])
    def get_group(group_id: str):
        if group_id not in GROUPS:
            return _error(None)
        subgroups = []
        for subgroup in SUBGROUPS.values():
            if subgroup['group'] != group_id:
                continue
            total = sum(1 for c in COUPONS.values() if c['subgroup'] == subgroup['_id'])
            subgroups.append(dict(subgroup, total=total))
        return _ok(subgroups)

    # ---- categories ----------------------------------------------------------
    @app.route('/api/category', methods=['GET'])
    def list_categories():
        records = list(CATEGORIES.values())
        search = request.args.get('search')
        if search:
            records = [c for c in records if search.lower() in c['name'].lower()]
        records = _paginate(_sorted(records, 'date_created'))
        return _ok([_category_view(c) for c in records])

    @app.route('/api/category', methods=['POST'])
    def create_category():
        form = request.form
        name = (form.get('name') or '').strip()
        if not name:
            return _error('name is required', 400)
        try:
            visible = _parse_bool(form.get('is_active', 'true'))
        except ValueError:
            return _error('is_active must be a boolean', 400)
        if any(c['name'] == name for c in CATEGORIES.values()):
            return _error('CATEGORY_ALREADY_EXISTS', 409)

        category = {
            '_id': _object_id(),
            'name': name,
            'slug': _slugify(name),
            'description': form.get('description', ''),
            'date_created': _now(),
            'visible': visible,
            'image': None,
            'media': [],
        }
        for field in ('color', 'icon'):
            if form.get(field):
                category[field] = form[field]
        if form.get('order', '').isdigit():
            category['order'] = int(form['order'])
        CATEGORIES[category['_id']] = category
        return _ok(_category_view(category))

    @app.route('/api/category/<category_id>', methods=['GET'])
    def get_category(category_id: str):
        category = CATEGORIES.get(category_id)
        if category is None:
            return _error(None, 404)
        return _ok(_category_view(category))

    @app.route('/api/category/<category_id>', methods=['POST'])
    def update_category(category_id: str):
        category = CATEGORIES.get(category_id)
        if category is None:
            return _error(None, 404)
        form = request.form
        if form.get('name'):
            category['name'] = form['name']
            category['slug'] = _slugify(form['name'])
        if form.get('description') is not None:
            category['description'] = form['description']
        if form.get('is_active') is not None:
            try:
                category['visible'] = _parse_bool(form['is_active'])
            except ValueError:
                return _error('is_active must be a boolean', 400)
        return _ok(_category_view(category))

    @app.route('/api/category/<category_id>', methods=['DELETE'])
    def delete_category(category_id: str):
        category = CATEGORIES.pop(category_id, None)
        if category is None:
            return _error(None, 404)
        for media in MEDIA.values():
            media['categories'] = [c for c in media['categories'] if c['_id'] != category_id]
        return _ok('CATEGORY_DELETED')

    @app.route('/api/category/<category_id>/media', methods=['GET'])
    def list_category_media(category_id: str):
        category = CATEGORIES.get(category_id)
        if category is None:
            return _error(None, 404)
        return _ok([_media_summary(MEDIA[m]) for m in category['media'] if m in MEDIA])

    @app.route('/api/category/<category_id>/media', methods=['POST'])
    def add_category_media(category_id: str):
        category = CATEGORIES.get(category_id)
        if category is None:
            return _error(None, 404)
        media = MEDIA.get(request.form.get('media_id', ''))
        if media is None:
            return _error('MEDIA_NOT_FOUND', 404)
        if media['_id'] not in category['media']:
            category['media'].append(media['_id'])
            media['categories'].append({'_id': category_id, 'name': category['name']})
        return _ok(_category_view(category))

    @app.route('/api/category/<category_id>/image', methods=['DELETE'])
    def delete_category_image(category_id: str):
        category = CATEGORIES.get(category_id)
        if category is None or not category.get('image'):
            return _error('IMAGE_NOT_FOUND', 404)
        category['image'] = None
        return _ok(_category_view(category))

    # ---- media ---------------------------------------------------------------
    @app.route('/api/media', methods=['GET'])
    def list_media():
        args = request.args
        records = list(MEDIA.values())
        if args.get('id'):
            records = [m for m in records if args['id'] in (m['id'], m['_id'])]
        if args.get('query'):
            records = [m for m in records if args['query'].lower() in m['title'].lower()]
        if args.get('type'):
            records = [m for m in records if m['type'] == args['type']]
        if args.get('min_duration') is not None:
            records = [m for m in records if m['duration'] >= args.get('min_duration', type=float)]
        if args.get('max_duration') is not None:
            records = [m for m in records if m['duration'] <= args.get('max_duration', type=float)]
        if args.get('min_views') is not None:
            records = [m for m in records if m['views'] >= args.get('min_views', type=float)]
        if args.get('category'):
            wanted = args['category']
            records = [m for m in records if any(wanted in (c['_id'], c['name']) for c in m['categories'])]
        if args.get('without_category') == 'true':
            records = [m for m in records if not m['categories']]
        if args.get('tag'):
            tags = set(args.getlist('tag'))
            if args.get('tags-rule', 'in_any') == 'in_all':
                records = [m for m in records if tags <= set(m['tags'])]
            else:
                records = [m for m in records if tags & set(m['tags'])]
        if args.get('is_published') is not None:
            published = args['is_published'] == 'true'
            records = [m for m in records if m['is_published'] is published]

        total = len(records)
        records = _paginate(_sorted(records, 'date_created'))
        body: Dict[str, Any] = {'status': 'OK', 'data': records}
        if args.get('count') == 'true':
            body['total'] = total
        return jsonify(body), 200

    return app


def reset_mock_state():
    """Reset all mock state (for test isolation)."""
    COUPONS.clear()
    GROUPS.clear()
    SUBGROUPS.clear()
    CATEGORIES.clear()
    MEDIA.clear()


def seed_group(name: str) -> Dict[str, Any]:
    group = {'_id': _object_id(), 'name': name, 'date_created': _now()}
    GROUPS[group['_id']] = group
    return group


def seed_subgroup(group_id: str) -> Dict[str, Any]:
    subgroup = {
        '_id': _object_id(),
        'group': group_id,
        'name': f'Batch {len(SUBGROUPS) + 1}',
        'date_created': _now(),
    }
    SUBGROUPS[subgroup['_id']] = subgroup
    return subgroup


def seed_coupon(group_id: str, code: str | None = None, reusable: bool = False) -> Dict[str, Any]:
    subgroup = seed_subgroup(group_id)
    coupon = {
        '_id': _object_id(),
        'group': group_id,
        'subgroup': subgroup['_id'],
        'code': code or _generate_code(),
        'date_created': _now(),
        'is_reusable': reusable,
        'is_used': False,
        'is_valid': True,
        'detail': 'Seeded coupon',
        'discount_type': 'percent',
        'percent': 10,
        'max_use': 1,
        'customer_max_use': 1,
    }
    COUPONS[coupon['_id']] = coupon
    return coupon


def seed_category(name: str, image: str | None = None) -> Dict[str, Any]:
    category = {
        '_id': _object_id(),
        'name': name,
        'slug': _slugify(name),
        'description': f'{name} titles',
        'date_created': _now(),
        'visible': True,
        'image': image,
        'media': [],
    }
    CATEGORIES[category['_id']] = category
    return category


def seed_media(
    title: str,
    media_type: str = 'video',
    duration: float = 120,
    views: int = 0,
    categories: List[Dict[str, Any]] | None = None,
    tags: List[str] | None = None,
    is_published: bool = True,
    age_days: int = 0,
    public_id: str | None = None,
) -> Dict[str, Any]:
    media_id = _object_id()
    created = datetime.now(timezone.utc) - timedelta(days=age_days)
    media = {
        'id': public_id or media_id,
        '_id': media_id,
        'title': title,
        'slug': _slugify(title),
        'type': media_type,
        'status': 'OK',
        'duration': duration,
        'views': views,
        'categories': [{'_id': c['_id'], 'name': c['name']} for c in categories or []],
        'tags': list(tags or []),
        'date_created': created.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
        'access_restrictions': {'enabled': False},
        'access_rules': [],
        'preview': {'enabled': False},
        'meta': [],
        'thumbnails': [],
        'protocols': {'hls': True},
        'show_info': {},
        'is_published': is_published,
        'is_initialized': True,
    }
    for category in categories or []:
        category['media'].append(media_id)
    MEDIA[media_id] = media
    return media


def seed_platform() -> None:
    """Populate a small but complete data set: groups, coupons, categories, media."""
    promos = seed_group('QA Promotions')
    seed_group('QA Empty Group')
    for _ in range(3):
        seed_coupon(promos['_id'])
    seed_coupon(promos['_id'], code='WELCOME10', reusable=True)

    sports = seed_category('Sports Highlights', image='https://cdn.example.com/sports.png')
    news = seed_category('Evening News')
    seed_media('Championship Final Replay', 'video', 5400, 1200, [sports], ['sports', 'final'], age_days=3,
               public_id='10001')
    seed_media('Morning Training Session', 'video', 1800, 300, [sports], ['sports'], age_days=2)
    seed_media('Evening News Bulletin', 'video', 900, 800, [news], ['news'], age_days=1)
    seed_media('Studio Podcast Episode', 'audio', 2400, 50, [], ['podcast'], is_published=False)


if __name__ == '__main__':
    # For running the mock server directly
    app = create_mock_api_app()
    seed_platform()
    print("Mock platform API server running on http://localhost:5556")
    print(f"Test token: {MOCK_TOKEN}")
    app.run(host='0.0.0.0', port=5556, debug=True)
