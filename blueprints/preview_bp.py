"""
LUMEN Core - Canvas Preview Blueprint
Routes: /api/canvas/*
Dependencies: engine
"""

import base64

from flask import Blueprint, jsonify, request

preview_bp = Blueprint('preview', __name__)

_engine = None

# Largest downsample step accepted by /api/canvas/preview
MAX_PREVIEW_STEP = 64


def init_app(engine):
    """Initialize blueprint with required dependencies."""
    global _engine
    _engine = engine


def encode_preview(frame, step=1):
    """
    Preview frame as JSON-ready dict.

    Pixels are RGB rows, top to bottom, base64 encoded; step > 1 keeps
    every step-th pixel in both directions.
    """
    step = max(1, int(step))
    rgb = frame.pixels[::step, ::step, :3]
    return {
        'frame_number': frame.frame_number,
        'timestamp': frame.timestamp,
        'origin_x': frame.origin_x,
        'origin_y': frame.origin_y,
        'step': step,
        'width': int(rgb.shape[1]),
        'height': int(rgb.shape[0]),
        'format': 'rgb24',
        'data': base64.b64encode(rgb.tobytes()).decode('ascii'),
    }


@preview_bp.route('/api/canvas/status', methods=['GET'])
def canvas_status():
    """Engine, scheduler and transport status"""
    return jsonify(_engine.get_status())


@preview_bp.route('/api/canvas/preview', methods=['GET'])
def canvas_preview():
    """Latest composited frame; ?step=N downsamples"""
    try:
        step = int(request.args.get('step', 1))
    except ValueError:
        return jsonify({'error': 'step must be an integer'}), 400
    if not 1 <= step <= MAX_PREVIEW_STEP:
        return jsonify({'error': f'step must be between 1 and {MAX_PREVIEW_STEP}'}), 400

    frame = _engine.latest_preview
    if frame is None:
        return jsonify({'error': 'No frame rendered yet'}), 404
    return jsonify(encode_preview(frame, step))


@preview_bp.route('/api/canvas/start', methods=['POST'])
def canvas_start():
    started = _engine.start()
    return jsonify({'success': True, 'started': started, 'running': _engine.is_running})


@preview_bp.route('/api/canvas/stop', methods=['POST'])
def canvas_stop():
    stopped = _engine.stop()
    return jsonify({'success': True, 'stopped': stopped, 'running': _engine.is_running})


@preview_bp.route('/api/canvas/render', methods=['POST'])
def canvas_render_once():
    """Render and send a single frame (useful while the loop is stopped)"""
    _engine.tick()
    frame = _engine.latest_preview
    return jsonify({'success': True, 'frame_number': frame.frame_number if frame else 0})
