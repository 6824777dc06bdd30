#!/usr/bin/env python3
"""
LUMEN Core - Shared canvas server for WLED-style LED controllers

Runs the canvas engine (compositor + device mapper + UDP output at a
fixed frame rate) behind a Flask REST API and streams throttled preview
frames over Socket.IO.

Startup:
    1. Configuration from LUMEN_* environment variables (EngineConfig)
    2. Installation loaded from LUMEN_INSTALLATION_FILE, saved animations
       recreated as regions
    3. Blueprints wired via init_app(), engine started
    4. SIGTERM: stop engine, save installation, tear down producers

Run:
    python lumen_core.py
"""

import json
import logging
import os
import signal
import threading
import time
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from blueprints.devices_bp import devices_bp, init_app as devices_init
from blueprints.preview_bp import encode_preview, preview_bp, init_app as preview_init
from blueprints.regions_bp import regions_bp, init_app as regions_init
from core.canvas import (
    CanvasEngine,
    EngineConfig,
    InstallationStore,
    WledClient,
    __version__ as LUMEN_VERSION,
)

logger = logging.getLogger('lumen')

# Downsample step of frames pushed over Socket.IO
PREVIEW_EMIT_STEP = 4


# ============================================================
# Audit log
# ============================================================

def create_audit_logger(log_dir):
    """Persistent audit log with file rotation (5 MB x 5)"""
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    audit_logger = logging.getLogger('lumen.audit')
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False  # Don't spam console
    if not audit_logger.handlers:
        handler = RotatingFileHandler(
            os.path.join(log_dir, 'audit.log'),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        handler.setFormatter(logging.Formatter('%(asctime)s %(message)s', datefmt='%Y-%m-%dT%H:%M:%S'))
        audit_logger.addHandler(handler)

    def audit_log(event_type, **kwargs):
        """Write a structured audit entry"""
        entry = json.dumps({'event': event_type, **kwargs}, separators=(',', ':'))
        audit_logger.info(entry)

    return audit_log


# ============================================================
# Engine bootstrap
# ============================================================

def restore_animations(engine, installation):
    """Recreate saved regions; unknown or invalid entries are skipped"""
    restored = 0
    for saved in installation.animations:
        try:
            animation = saved.create()
            engine.add_region(saved.rect, animation, saved.rotation,
                              region_id=saved.id, animation_type=saved.type)
            restored += 1
        except ValueError as e:
            logger.warning(f"Skipping saved animation {saved.id} ({saved.type}): {e}")
    return restored


class PreviewEmitter:
    """Engine preview listener that emits at most emit_fps frames per second"""

    def __init__(self, socketio, emit_fps, step=PREVIEW_EMIT_STEP):
        self._socketio = socketio
        self._interval = 1.0 / emit_fps
        self._step = step
        self._last_emit = 0.0

    def __call__(self, frame):
        now = time.monotonic()
        if now - self._last_emit < self._interval:
            return
        self._last_emit = now
        self._socketio.emit('canvas_preview', encode_preview(frame, self._step))


def create_app(config=None, store=None, wled_client=None, transport=None):
    """
    Build the Flask app, Socket.IO server and canvas engine.

    Returns:
        (app, socketio, engine, store)
    """
    config = config or EngineConfig.from_env()
    store = store or InstallationStore(config.installation_path)
    wled_client = wled_client or WledClient()
    audit_log = create_audit_logger(config.log_dir)

    try:
        installation = store.load()
    except ValueError as e:
        logger.error(f"{e}; starting with an empty installation")
        installation = None

    engine = CanvasEngine(installation, transport=transport, config=config)
    if installation is not None:
        restored = restore_animations(engine, installation)
        logger.info(f"Restored {restored}/{len(installation.animations)} saved animations")

    save_lock = threading.Lock()

    def save_installation():
        with save_lock:
            try:
                store.save(engine.to_installation())
            except OSError as e:
                logger.warning(f"Could not save installation to {store.path}: {e}")

    app = Flask(__name__)
    CORS(app, resources={r"/api/*": {"origins": config.cors_origins}})
    socketio = SocketIO(app, cors_allowed_origins=config.cors_origins, async_mode='threading')

    devices_init(engine, wled_client, save_installation, audit_log)
    regions_init(engine, save_installation, audit_log)
    preview_init(engine)

    app.register_blueprint(devices_bp)
    app.register_blueprint(regions_bp)
    app.register_blueprint(preview_bp)

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok', 'version': LUMEN_VERSION, 'running': engine.is_running})

    @app.route('/api/installation', methods=['GET'])
    def get_installation():
        return jsonify(engine.to_installation().to_dict())

    @app.route('/api/installation/save', methods=['POST'])
    def save_installation_route():
        save_installation()
        audit_log('installation_save', path=store.path)
        return jsonify({'success': True, 'path': store.path})

    engine.add_preview_listener(PreviewEmitter(socketio, config.preview_emit_fps))
    app.extensions['lumen_engine'] = engine
    app.extensions['lumen_save_installation'] = save_installation
    return app, socketio, engine, store


# ============================================================
# Main
# ============================================================

if __name__ == '__main__':
    config = EngineConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    app, socketio, engine, store = create_app(config)

    def _graceful_shutdown(signum, frame):
        logger.info("SIGTERM received - graceful shutdown")
        engine.stop()
        try:
            store.save(engine.to_installation())
        except OSError as e:
            logger.warning(f"Could not save installation: {e}")
        engine.shutdown()
        logger.info("Shutdown complete")
        os._exit(0)

    signal.signal(signal.SIGTERM, _graceful_shutdown)

    engine.start()
    logger.info(f"LUMEN Core {LUMEN_VERSION} listening on port {config.api_port} "
                f"({config.protocol} output, {config.target_fps} FPS)")
    socketio.run(app, host='0.0.0.0', port=config.api_port, debug=False, allow_unsafe_werkzeug=True)
