"""
LUMEN Core - Devices Blueprint
Routes: /api/devices/*
Dependencies: engine, wled_client, save_installation, audit_log
"""

from flask import Blueprint, jsonify, request

from core.canvas.types import Device
from core.canvas.wled import build_device

devices_bp = Blueprint('devices', __name__)

_engine = None
_wled_client = None
_save_installation = None
_audit_log = None

# Fields a PUT may change; identity stays fixed
EDITABLE_FIELDS = (
    'ip', 'name', 'pixel_count', 'x', 'y', 'width', 'height', 'rotation',
    'segment_width', 'serpentine', 'is_2d', 'matrix_width', 'matrix_height', 'port',
)


def init_app(engine, wled_client, save_installation_fn, audit_log_fn):
    """Initialize blueprint with required dependencies."""
    global _engine, _wled_client, _save_installation, _audit_log
    _engine = engine
    _wled_client = wled_client
    _save_installation = save_installation_fn
    _audit_log = audit_log_fn


def _persist(event_type, **kwargs):
    _audit_log(event_type, **kwargs)
    _save_installation()


@devices_bp.route('/api/devices', methods=['GET'])
def list_devices():
    """List placed devices"""
    return jsonify({'devices': [d.to_dict() for d in _engine.get_devices()]})


@devices_bp.route('/api/devices', methods=['POST'])
def add_device():
    """Place a device from an explicit description"""
    data = request.get_json() or {}
    if not data.get('ip'):
        return jsonify({'error': 'ip is required'}), 400
    try:
        device = _engine.add_device(Device.from_dict(data))
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    _persist('device_add', device_id=device.id, ip=device.ip)
    return jsonify({'success': True, 'device': device.to_dict()}), 201


@devices_bp.route('/api/devices/probe', methods=['POST'])
def probe_device():
    """Query a WLED controller and place it at the next free slot"""
    data = request.get_json() or {}
    ip = data.get('ip')
    if not isinstance(ip, str) or not ip.strip():
        return jsonify({'error': 'ip is required'}), 400
    ip = ip.strip()
    if any(d.ip == ip for d in _engine.get_devices()):
        return jsonify({'error': f'Device {ip} already placed'}), 400

    info = _wled_client.get_info(ip)
    config = _wled_client.get_config(ip) if info else None
    device = build_device(ip, info, config, _engine.get_devices(), name=data.get('name', ''))
    _engine.add_device(device)

    _persist('device_probe', device_id=device.id, ip=ip, reachable=info is not None)
    return jsonify({'success': True, 'reachable': info is not None, 'device': device.to_dict()}), 201


@devices_bp.route('/api/devices/<device_id>', methods=['PUT'])
def update_device(device_id):
    """Move, resize, rotate or reconfigure a device"""
    data = request.get_json() or {}
    changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
    if not changes:
        return jsonify({'error': 'No editable fields given'}), 400
    try:
        device = _engine.update_device(device_id, **changes)
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    if device is None:
        return jsonify({'error': 'Device not found'}), 404

    _persist('device_update', device_id=device_id, fields=sorted(changes))
    return jsonify({'success': True, 'device': device.to_dict()})


@devices_bp.route('/api/devices/<device_id>', methods=['DELETE'])
def delete_device(device_id):
    """Remove a device from the installation"""
    if not _engine.remove_device(device_id):
        return jsonify({'error': 'Device not found'}), 404

    _persist('device_remove', device_id=device_id)
    return jsonify({'success': True})


@devices_bp.route('/api/devices/<device_id>/ping', methods=['GET'])
def ping_device(device_id):
    """Check whether the controller answers HTTP"""
    device = _engine.get_device(device_id)
    if device is None:
        return jsonify({'error': 'Device not found'}), 404
    return jsonify({'device_id': device_id, 'reachable': _wled_client.ping(device.ip)})


@devices_bp.route('/api/devices/<device_id>/reboot', methods=['POST'])
def reboot_device(device_id):
    """Ask the controller to reboot"""
    device = _engine.get_device(device_id)
    if device is None:
        return jsonify({'error': 'Device not found'}), 404

    ok = _wled_client.reboot(device.ip)
    _audit_log('device_reboot', device_id=device_id, ip=device.ip, success=ok)
    return jsonify({'success': ok})
