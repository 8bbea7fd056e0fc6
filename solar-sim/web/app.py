"""
Flask JSON API for the solar plant simulator.
Replaces the browser dashboard panels: every view is a GET endpoint and every
operator control is an admin-only POST.
"""
import os
import logging
import threading
from functools import wraps
from flask import Flask, jsonify, request, Response
from flask_cors import CORS
from flask_login import LoginManager, UserMixin, login_user, logout_user, current_user
from werkzeug.security import generate_password_hash, check_password_hash

from assistant import ChatAssistant
from automation import AutomationController
from plant import SolarPlantEngine
from reporting import export_log_document, generate_report, log_export_filename
from settings import SettingsStore, SettingsValidationError

logger = logging.getLogger("WebAPI")

QUICK_ACTIONS = ('analyze', 'maintenance', 'optimize')


class User(UserMixin):
    """Operator account."""

    def __init__(self, id: str, username: str, password_hash: str, role: str = "viewer"):
        self.id = id
        self.username = username
        self.password_hash = password_hash
        self.role = role  # "admin" or "viewer"

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


class UserStore:
    """In-memory accounts; passwords come from the environment."""

    def __init__(self):
        self._users = {}
        admin_pass = os.environ.get("ADMIN_PASSWORD", "admin123")
        viewer_pass = os.environ.get("VIEWER_PASSWORD", "viewer123")

        self.add_user("1", "admin", admin_pass, "admin")
        self.add_user("2", "viewer", viewer_pass, "viewer")

    def add_user(self, id: str, username: str, password: str, role: str = "viewer"):
        user = User(id, username, generate_password_hash(password), role)
        self._users[id] = user
        self._users[username] = user

    def get_by_id(self, user_id: str) -> User:
        return self._users.get(user_id)

    def get_by_username(self, username: str) -> User:
        return self._users.get(username)


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def create_app(engine: SolarPlantEngine,
               assistant: ChatAssistant = None,
               settings: SettingsStore = None,
               automation: AutomationController = None) -> Flask:
    """
    Factory function to create the Flask app around an existing engine.
    """
    app = Flask(__name__)

    settings = settings or SettingsStore()
    assistant = assistant or ChatAssistant(settings.settings.llm_base_url)
    automation = automation or AutomationController(
        engine, assistant, settings, os.environ.get("LOG_EXPORT_DIR", "exports")
    )

    app.config['SECRET_KEY'] = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")
    app.config['engine'] = engine
    app.config['assistant'] = assistant
    app.config['settings'] = settings
    app.config['automation'] = automation

    CORS(app, supports_credentials=True)

    login_manager = LoginManager()
    login_manager.init_app(app)

    user_store = UserStore()
    app.config['user_store'] = user_store

    @login_manager.user_loader
    def load_user(user_id):
        return user_store.get_by_id(user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    # --- Auth ---

    @app.route('/login', methods=['POST'])
    def login():
        data = request.get_json(silent=True) or request.form
        username = (data.get('username') or '').strip()
        password = data.get('password') or ''

        user = user_store.get_by_username(username)
        if user and user.check_password(password):
            login_user(user, remember=bool(data.get('remember')))
            logger.info(f"User '{username}' logged in")
            return jsonify({'success': True, 'username': user.username, 'role': user.role})

        logger.warning(f"Failed login attempt for '{username}'")
        return jsonify({'error': 'Invalid username or password'}), 401

    @app.route('/logout', methods=['POST'])
    def logout():
        if current_user.is_authenticated:
            logger.info(f"User '{current_user.username}' logged out")
            logout_user()
        return jsonify({'success': True})

    def api_login_required(f):
        """Decorator for API routes - returns JSON error instead of redirect."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            return f(*args, **kwargs)
        return decorated

    def admin_required(f):
        """Decorator for admin-only routes."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            if current_user.role != 'admin':
                return jsonify({'error': 'Admin access required'}), 403
            return f(*args, **kwargs)
        return decorated

    # --- Read-only views ---

    @app.route('/api/user')
    @api_login_required
    def get_current_user():
        return jsonify({'username': current_user.username, 'role': current_user.role})

    @app.route('/api/status')
    @api_login_required
    def get_status():
        status = engine.get_status()
        status['automation'] = automation.status()
        return jsonify(status)

    @app.route('/api/equipment')
    @api_login_required
    def get_equipment():
        return jsonify(engine.get_equipment())

    @app.route('/api/equipment/<equipment_id>')
    @api_login_required
    def get_equipment_unit(equipment_id):
        unit = engine.read_state(lambda state: state.equipment.get(equipment_id))
        if unit is None:
            return jsonify({'error': f'Unknown equipment: {equipment_id}'}), 404
        return jsonify(unit.to_dict())

    @app.route('/api/anomalies')
    @api_login_required
    def get_anomalies():
        active_only = request.args.get('active', '').lower() in ('1', 'true', 'yes')
        return jsonify(engine.get_anomalies(active_only=active_only))

    @app.route('/api/environment')
    @api_login_required
    def get_environment():
        return jsonify(engine.get_environment())

    @app.route('/api/alerts')
    @api_login_required
    def get_alerts():
        return jsonify(engine.get_alerts(request.args.get('limit', 20, type=int)))

    @app.route('/api/logs')
    @api_login_required
    def get_logs():
        return jsonify(engine.get_logs(request.args.get('count', 50, type=int)))

    @app.route('/api/logs/export')
    @api_login_required
    def export_logs():
        document = automation.export_document()
        return Response(
            document,
            mimetype='text/plain',
            headers={'Content-Disposition': f'attachment; filename={log_export_filename()}'}
        )

    @app.route('/api/report')
    @api_login_required
    def get_report():
        report = generate_report(engine.read_state, assistant, engine.location_name)
        return jsonify(report)

    @app.route('/api/drone')
    @api_login_required
    def get_drone():
        return jsonify(engine.get_drone())

    # --- Time controls ---

    @app.route('/api/admin/time', methods=['POST'])
    @admin_required
    def set_time():
        data = _payload()
        try:
            hour = int(data['hour'])
            minute = int(data.get('minute', 0))
            now = engine.set_manual_time(hour, minute)
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({'error': f'Invalid time: {e}'}), 400
        logger.info(f"Admin '{current_user.username}' set simulation time to {now:%H:%M}")
        return jsonify({'success': True, 'time': now.isoformat()})

    @app.route('/api/admin/time/reset', methods=['POST'])
    @admin_required
    def reset_time():
        now = engine.reset_time()
        return jsonify({'success': True, 'time': now.isoformat()})

    @app.route('/api/admin/time/advance', methods=['POST'])
    @admin_required
    def advance_time():
        now = engine.advance_one_hour()
        return jsonify({'success': True, 'time': now.isoformat()})

    # --- Environment controls ---

    @app.route('/api/admin/environment/manual', methods=['POST'])
    @admin_required
    def set_manual_control():
        data = _payload()
        if 'enabled' not in data:
            return jsonify({'error': 'enabled required'}), 400
        engine.set_manual_control(bool(data['enabled']))
        return jsonify({'success': True, 'environment': engine.get_environment()})

    @app.route('/api/admin/environment/factors', methods=['POST'])
    @admin_required
    def set_factors():
        data = _payload()
        if not data:
            return jsonify({'error': 'No data provided'}), 400
        try:
            accepted = engine.set_factors(data)
        except (TypeError, ValueError) as e:
            return jsonify({'error': str(e)}), 400
        if not accepted:
            return jsonify({'error': 'Manual environmental control is disabled'}), 400
        return jsonify({'success': True, 'environment': engine.get_environment()})

    @app.route('/api/admin/environment/reset', methods=['POST'])
    @admin_required
    def reset_environment():
        engine.reset_environment()
        return jsonify({'success': True, 'environment': engine.get_environment()})

    # --- Anomaly controls ---

    @app.route('/api/admin/anomalies', methods=['POST'])
    @admin_required
    def generate_anomaly():
        anomaly_type = _payload().get('type')
        if not anomaly_type:
            return jsonify({'error': 'Please select an anomaly type'}), 400
        try:
            anomaly = engine.generate_anomaly(anomaly_type)
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        logger.info(f"Admin '{current_user.username}' generated anomaly {anomaly.id} ({anomaly_type})")
        return jsonify({'success': True, 'anomaly': anomaly.to_dict()})

    @app.route('/api/admin/anomalies/<int:anomaly_id>/correct', methods=['POST'])
    @admin_required
    def correct_anomaly(anomaly_id: int):
        corrected = engine.correct_anomaly(anomaly_id)
        return jsonify({'success': True, 'corrected': corrected})

    # --- Drone ---

    @app.route('/api/admin/drone/scan', methods=['POST'])
    @admin_required
    def start_drone_scan():
        started = engine.start_drone_scan()
        return jsonify({'success': True, 'started': started, 'drone': engine.get_drone()})

    # --- Simulation parameters ---

    @app.route('/api/admin/simulation-params', methods=['GET'])
    @admin_required
    def get_simulation_params():
        return jsonify({'parameters': engine.read_state(lambda state: state.params.get_all())})

    @app.route('/api/admin/simulation-params', methods=['POST'])
    @admin_required
    def update_simulation_params():
        data = _payload()
        if not data:
            return jsonify({'error': 'No data provided'}), 400
        try:
            results = engine.update_parameters(data)
        except (TypeError, ValueError) as e:
            return jsonify({'error': f'Invalid parameter value: {e}'}), 400
        success_count = sum(1 for v in results.values() if v)
        logger.info(f"Admin '{current_user.username}' updated {success_count} simulation parameters")
        return jsonify({'success': True, 'results': results, 'updated_count': success_count})

    # --- Settings ---

    @app.route('/api/admin/settings', methods=['GET'])
    @admin_required
    def get_settings():
        return jsonify(settings.settings.to_dict())

    @app.route('/api/admin/settings', methods=['POST'])
    @admin_required
    def update_settings():
        try:
            updated = settings.update(_payload())
        except SettingsValidationError as e:
            return jsonify({'error': str(e)}), 400
        automation.apply_settings(updated)
        engine.raise_alert("Settings saved successfully")
        engine.record_event("Settings updated", 'system')
        return jsonify({'success': True, 'settings': updated.to_dict()})

    @app.route('/api/admin/settings/reset', methods=['POST'])
    @admin_required
    def reset_settings():
        updated = settings.reset()
        automation.apply_settings(updated)
        engine.raise_alert("Settings reset to defaults")
        engine.record_event("Settings reset to defaults", 'system')
        return jsonify({'success': True, 'settings': updated.to_dict()})

    # --- Automation ---

    @app.route('/api/admin/automation/analysis', methods=['POST'])
    @admin_required
    def toggle_auto_analysis():
        data = _payload()
        if 'enabled' not in data:
            return jsonify({'error': 'enabled required'}), 400
        automation.set_auto_analysis(bool(data['enabled']))
        return jsonify({'success': True, 'automation': automation.status()})

    @app.route('/api/admin/automation/download', methods=['POST'])
    @admin_required
    def toggle_auto_download():
        data = _payload()
        if 'enabled' not in data:
            return jsonify({'error': 'enabled required'}), 400
        automation.set_auto_download(bool(data['enabled']))
        return jsonify({'success': True, 'automation': automation.status()})

    # --- Assistant ---

    @app.route('/api/assistant/status')
    @api_login_required
    def assistant_status():
        return jsonify({
            'connected': assistant.check_availability(),
            'base_url': assistant.base_url,
            'history_length': len(assistant.history),
        })

    @app.route('/api/assistant/transcript')
    @api_login_required
    def assistant_transcript():
        return jsonify([
            {'role': m['role'], 'content': m['content'], 'timestamp': m['timestamp'].isoformat()}
            for m in assistant.transcript
        ])

    @app.route('/api/admin/assistant/chat', methods=['POST'])
    @admin_required
    def assistant_chat():
        message = (_payload().get('message') or '').strip()
        if not message:
            return jsonify({'error': 'Message required'}), 400
        engine.record_event(f"AI - User: {message}", 'ai-chat')
        result = assistant.chat(message)
        if 'message' in result:
            reply = result['message']
            engine.record_event(f"AI - Assistant: {reply[:100]}{'...' if len(reply) > 100 else ''}", 'ai-chat')
        else:
            engine.record_event(f"AI - Error: {result['error']}", 'ai-error')
        return jsonify(result)

    @app.route('/api/admin/assistant/actions/<action>', methods=['POST'])
    @admin_required
    def assistant_action(action: str):
        if action not in QUICK_ACTIONS:
            return jsonify({'error': f'Unknown action: {action}'}), 404
        handlers = {
            'analyze': assistant.analyze_recent_events,
            'maintenance': assistant.predict_maintenance,
            'optimize': assistant.optimize_performance,
        }
        assistant.record('system', f"Quick action: {action}")
        result = handlers[action](engine.read_state)
        if 'message' in result:
            assistant.record('assistant', result['message'])
        else:
            assistant.record('error', result['error'])
        return jsonify(result)

    @app.route('/api/admin/assistant/clear', methods=['POST'])
    @admin_required
    def assistant_clear():
        assistant.clear_history()
        return jsonify({'success': True})

    return app


class WebServer:
    """
    Runs the API with werkzeug on a background thread.
    """

    def __init__(self, engine: SolarPlantEngine, host: str = "0.0.0.0", port: int = 8080,
                 assistant: ChatAssistant = None, settings: SettingsStore = None,
                 automation: AutomationController = None):
        self._engine = engine
        self._host = host
        self._port = port
        self._assistant = assistant
        self._settings = settings
        self._automation = automation
        self._app = None
        self._server = None
        self._thread = None

    def start(self) -> None:
        """Start the web server in a background thread."""
        from werkzeug.serving import make_server

        self._app = create_app(self._engine, self._assistant, self._settings, self._automation)
        self._server = make_server(self._host, self._port, self._app, threaded=True)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"Web API started on http://{self._host}:{self._port}")

    def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.shutdown()
        logger.info("Web server stopped")
