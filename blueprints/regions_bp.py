"""
LUMEN Core - Regions Blueprint
Routes: /api/regions/*, /api/animations/*, /api/input/*
Dependencies: engine, save_installation, audit_log
"""

import math

from flask import Blueprint, jsonify, request

from core.canvas.animations import create_animation, list_animation_types
from core.canvas.types import Rect

regions_bp = Blueprint('regions', __name__)

_engine = None
_save_installation = None
_audit_log = None


def init_app(engine, save_installation_fn, audit_log_fn):
    """Initialize blueprint with required dependencies."""
    global _engine, _save_installation, _audit_log
    _engine = engine
    _save_installation = save_installation_fn
    _audit_log = audit_log_fn


def _persist(event_type, **kwargs):
    _audit_log(event_type, **kwargs)
    _save_installation()


def _region_json(region, z_index=None):
    data = region.to_dict()
    if z_index is not None:
        data['z_index'] = z_index
    return data


def _rect(data):
    rect = Rect.from_dict(data)
    if rect.width < 0 or rect.height < 0:
        raise ValueError('rect must not have a negative size')
    return rect


def _number(data, key, default=0.0):
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f'{key} must be a number')
    try:
        number = float(value)
    except OverflowError:
        raise ValueError(f'{key} is out of range')
    if not math.isfinite(number):
        raise ValueError(f'{key} must be finite')
    return number


# ─────────────────────────────────────────────────────────
# Regions
# ─────────────────────────────────────────────────────────

@regions_bp.route('/api/regions', methods=['GET'])
def list_regions():
    """List regions in paint order (last = topmost)"""
    regions = _engine.get_regions()
    return jsonify({'regions': [_region_json(r, i) for i, r in enumerate(regions)]})


@regions_bp.route('/api/regions', methods=['POST'])
def create_region():
    """Create an animation producer and place it on top"""
    data = request.get_json() or {}
    animation_type = data.get('type')
    if not animation_type:
        return jsonify({'error': 'type is required'}), 400
    if not isinstance(data.get('rect'), dict):
        return jsonify({'error': 'rect is required'}), 400

    try:
        rect = _rect(data['rect'])
        rotation = _number(data, 'rotation')
        animation = create_animation(animation_type, **(data.get('params') or {}))
        region = _engine.add_region(rect, animation, rotation,
                                    region_id=data.get('id'), animation_type=animation_type)
    except (KeyError, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    _persist('region_add', region_id=region.id, type=animation_type)
    return jsonify({'success': True, 'region': _region_json(region)}), 201


@regions_bp.route('/api/regions/<region_id>', methods=['GET'])
def get_region(region_id):
    region = _engine.get_region(region_id)
    if region is None:
        return jsonify({'error': 'Region not found'}), 404
    return jsonify(_region_json(region))


@regions_bp.route('/api/regions/<region_id>', methods=['PUT'])
def update_region(region_id):
    """Move, resize or rotate a region; omitted fields keep their value"""
    region = _engine.get_region(region_id)
    if region is None:
        return jsonify({'error': 'Region not found'}), 404

    data = request.get_json() or {}
    try:
        rect = _rect(data['rect']) if isinstance(data.get('rect'), dict) else region.rect
        rotation = _number(data, 'rotation', region.rotation)
        updated = _engine.update_region(region_id, rect, rotation)
    except (KeyError, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    if updated is None:
        return jsonify({'error': 'Region not found'}), 404

    _persist('region_update', region_id=region_id)
    return jsonify({'success': True, 'region': _region_json(updated)})


@regions_bp.route('/api/regions/<region_id>', methods=['DELETE'])
def delete_region(region_id):
    """Remove a region and tear down its producer"""
    if not _engine.remove_region(region_id):
        return jsonify({'error': 'Region not found'}), 404

    _persist('region_remove', region_id=region_id)
    return jsonify({'success': True})


@regions_bp.route('/api/regions/<region_id>/front', methods=['POST'])
def bring_region_to_front(region_id):
    if not _engine.bring_to_front(region_id):
        return jsonify({'error': 'Region not found'}), 404

    _persist('region_front', region_id=region_id)
    return jsonify({'success': True})


@regions_bp.route('/api/regions/<region_id>/capabilities', methods=['GET'])
def get_capabilities(region_id):
    """Editable properties of the region's producer and their values"""
    region = _engine.get_region(region_id)
    if region is None:
        return jsonify({'error': 'Region not found'}), 404
    return jsonify(region.capabilities.to_dict())


@regions_bp.route('/api/regions/<region_id>/capabilities', methods=['PUT'])
def set_capabilities(region_id):
    """Set one or more properties, e.g. {"primary_color": "#FF0000"}"""
    region = _engine.get_region(region_id)
    if region is None:
        return jsonify({'error': 'Region not found'}), 404

    data = request.get_json() or {}
    if not data:
        return jsonify({'error': 'No properties given'}), 400
    try:
        for name, value in data.items():
            region.capabilities.set_value(name, value)
    except KeyError as e:
        return jsonify({'error': str(e.args[0]) if e.args else 'Unsupported capability'}), 400
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    _persist('region_capabilities', region_id=region_id, properties=sorted(data))
    return jsonify({'success': True, 'capabilities': region.capabilities.to_dict()})


@regions_bp.route('/api/animations/types', methods=['GET'])
def animation_types():
    return jsonify({'types': list_animation_types()})


# ─────────────────────────────────────────────────────────
# Input
# ─────────────────────────────────────────────────────────

@regions_bp.route('/api/input/touch', methods=['POST'])
def input_touch():
    """
    Route a touch to the topmost region.

    Body: {"x", "y"} in world units, or {"screen_x", "screen_y",
    "screen_width", "screen_height"} converted through the installation camera.
    """
    data = request.get_json() or {}
    try:
        if 'screen_x' in data:
            viewport = _engine.viewport(_number(data, 'screen_width'), _number(data, 'screen_height'))
            handled = _engine.route_screen_touch(viewport, _number(data, 'screen_x'), _number(data, 'screen_y'))
        else:
            if 'x' not in data or 'y' not in data:
                return jsonify({'error': 'x and y are required'}), 400
            handled = _engine.route_touch(_number(data, 'x'), _number(data, 'y'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'handled': handled})


@regions_bp.route('/api/input/transform', methods=['POST'])
def input_transform():
    """Route a pan / zoom / rotate gesture centred on (target_x, target_y)"""
    data = request.get_json() or {}
    if 'target_x' not in data or 'target_y' not in data:
        return jsonify({'error': 'target_x and target_y are required'}), 400
    try:
        handled = _engine.route_transform(
            _number(data, 'target_x'), _number(data, 'target_y'),
            _number(data, 'pan_x'), _number(data, 'pan_y'),
            _number(data, 'zoom', 1.0), _number(data, 'rotation'),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify({'handled': handled})


@regions_bp.route('/api/input/end', methods=['POST'])
def input_end():
    """Pointer lifted: ends drags and other gestures in every region"""
    notified = _engine.route_interaction_end()
    return jsonify({'success': True, 'notified': notified})
