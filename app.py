#!/usr/bin/env python3
"""
Goal Dashboard - Flask Web Server
Goals, weekly habits, Google Fit activity and AI goal suggestions.

Run: python app.py
Access: http://localhost:5000
"""

import secrets
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify, request, session, redirect, url_for, g

from config import (
    DEMO_MODE,
    FIREBASE_API_KEY,
    FIREBASE_CREDENTIALS,
    FIREBASE_PROJECT_ID,
    FLASK_DEBUG,
    FLASK_HOST,
    FLASK_PORT,
    FLASK_SECRET_KEY,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_REDIRECT_URI,
    LOCAL_USERS_FILE,
    LOG_DIR,
    SESSION_IDLE_SECONDS,
)

# Rotating log file next to stdout logging set up by config
LOG_DIR.mkdir(parents=True, exist_ok=True)
_file_handler = RotatingFileHandler(LOG_DIR / "goal-dashboard.log", maxBytes=10*1024*1024, backupCount=5)
_file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
logging.getLogger().addHandler(_file_handler)
logger = logging.getLogger(__name__)

# Import our modules
from auth import (
    AUTHENTICATING,
    DASHBOARD_PATH,
    LANDING_PATH,
    LOGIN_PATH,
    CallbackConsent,
    login_required,
    resolve_redirect,
)
from dashboard import DashboardController
from document_store import FirestoreDocumentStore, MemoryDocumentStore
from errors import AuthError, ConsentCancelled, DashboardError
from firebase_identity import FirebaseIdentityProvider, LocalIdentityProvider
from goal_suggester import GoalSuggester
from google_oauth_client import GoogleOAuthClient

app = Flask(__name__)


# Use persistent secret key - generate and save if not configured
def get_or_create_secret_key():
    """Get secret key from config or generate and persist one"""
    if FLASK_SECRET_KEY:
        return FLASK_SECRET_KEY

    secret_key_file = LOG_DIR.parent / ".flask_secret_key"
    if secret_key_file.exists():
        return secret_key_file.read_text().strip()

    new_key = secrets.token_hex(32)
    secret_key_file.write_text(new_key)
    logger.info("Generated new Flask secret key")
    return new_key


app.secret_key = get_or_create_secret_key()

# Backends: Firebase when configured, otherwise demo mode
if DEMO_MODE:
    logger.warning("Firebase not configured, running in demo mode with in-memory data")
    store = MemoryDocumentStore()
    identity = LocalIdentityProvider(LOCAL_USERS_FILE)
else:
    store = FirestoreDocumentStore.from_credentials(FIREBASE_CREDENTIALS, FIREBASE_PROJECT_ID)
    identity = FirebaseIdentityProvider(FIREBASE_API_KEY, request_uri=GOOGLE_REDIRECT_URI)
    logger.info(f"Connected to Firebase project {FIREBASE_PROJECT_ID or '(default)'}")

oauth = GoogleOAuthClient(GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI)
suggester = GoalSuggester()

# Signed-in controllers, keyed by a random id in the cookie: sid -> (controller, last seen)
_dashboards: dict[str, tuple[DashboardController, float]] = {}
_dashboards_lock = threading.Lock()

PAGE_PATHS = (LANDING_PATH, LOGIN_PATH, "/signup", DASHBOARD_PATH)
OAUTH_INTENTS = ("signin", "link", "reauth", "relink")


def _evict_idle(now: float) -> list:
    """Remove sessions idle past SESSION_IDLE_SECONDS; caller closes them"""
    expired = [sid for sid, (_, seen) in _dashboards.items() if now - seen > SESSION_IDLE_SECONDS]
    return [_dashboards.pop(sid)[0] for sid in expired]


def get_dashboard() -> DashboardController:
    """The session's registered controller, or a fresh unregistered one for anonymous requests"""
    now = time.monotonic()
    sid = session.get("sid")
    with _dashboards_lock:
        stale = _evict_idle(now)
        entry = _dashboards.get(sid) if sid else None
        if entry is not None:
            _dashboards[sid] = (entry[0], now)
    for dashboard in stale:
        logger.info("Closing idle dashboard session")
        dashboard.close()
    if entry is not None:
        return entry[0]
    return DashboardController(store, identity, oauth, suggester=suggester)


def remember_dashboard(dashboard: DashboardController):
    """Keep a controller for this browser session once it has signed in"""
    sid = session.get("sid") or secrets.token_urlsafe(16)
    session["sid"] = sid
    with _dashboards_lock:
        _dashboards[sid] = (dashboard, time.monotonic())


def drop_dashboard():
    sid = session.pop("sid", None)
    with _dashboards_lock:
        entry = _dashboards.pop(sid, None)
    if entry is not None:
        entry[0].close()


@app.before_request
def load_session():
    """Attach the session's dashboard and apply the page routing policy"""
    g.dashboard = get_dashboard()
    g.session_context = g.dashboard.context
    if request.path in PAGE_PATHS:
        target = resolve_redirect(request.path, g.session_context.is_authenticated,
                                 resolving=g.session_context.auth_state == AUTHENTICATING)
        if target:
            return redirect(target)


def result_response(result, status: int = 200):
    """JSON for an ActionResult: 400 on validation, 502 on other failures"""
    if result.ok:
        return jsonify(result.to_dict()), status
    return jsonify(result.to_dict()), 400 if result.errors else 502


def request_data() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


# Pages and session

@app.route('/')
def index():
    """Landing page"""
    context = g.session_context
    return jsonify({
        "app": "Goal Dashboard",
        "authenticated": context.is_authenticated,
        "googleSignIn": oauth.is_configured and identity.supports_federated,
        "demoMode": DEMO_MODE,
    })


@app.route('/dashboard')
def dashboard_page():
    """Main dashboard page"""
    g.dashboard.open()
    return jsonify(g.dashboard.state())


@app.route('/signup', methods=['POST'])
def signup():
    data = request_data()
    result = g.dashboard.sign_up(data.get('name', ''), data.get('email', ''), data.get('password', ''))
    if result.ok:
        remember_dashboard(g.dashboard)
        if not request.is_json:
            return redirect(DASHBOARD_PATH)
    return result_response(result, 201)


@app.route('/login', methods=['GET', 'POST'])
def login_page():
    """Email sign-in"""
    if request.method == 'POST':
        data = request_data()
        result = g.dashboard.sign_in(data.get('email', ''), data.get('password', ''))
        if result.ok:
            remember_dashboard(g.dashboard)
            session.permanent = True
            if not request.is_json:
                return redirect(DASHBOARD_PATH)
            return result_response(result)
        if result.errors:
            return result_response(result)
        return jsonify({"error": result.message or "Invalid email or password"}), 401

    return jsonify({"login": True, "googleSignIn": oauth.is_configured and identity.supports_federated})


@app.route('/logout')
def logout():
    """Sign out, forget the session and go back to the landing page"""
    target = g.dashboard.sign_out()
    drop_dashboard()
    session.clear()
    return redirect(target)


@app.route('/api/user')
@login_required
def api_user():
    """Get current user info"""
    context = g.session_context
    return jsonify({
        **context.user.to_dict(),
        "fitLinked": bool(context.fit_token),
        "fitState": context.fit_state,
    })


# Google consent (sign-in and Google Fit linking)

@app.route('/auth/google')
def google_auth():
    """Send the user to Google's consent screen"""
    intent = request.args.get('intent', 'signin')
    if intent not in OAUTH_INTENTS:
        return jsonify({"error": f"Unknown intent: {intent}"}), 400
    if not (oauth.is_configured and identity.supports_federated):
        g.session_context.notify("Error", "Google sign-in is not configured.", "destructive")
        return redirect(LOGIN_PATH if intent == "signin" else DASHBOARD_PATH)
    if intent != "signin" and not g.session_context.is_authenticated:
        return redirect(LOGIN_PATH)

    state = secrets.token_urlsafe(24)
    session['oauth_state'] = state
    session['oauth_intent'] = intent
    prompt = "login consent" if intent == "relink" else "consent"
    return redirect(oauth.authorization_url(state, prompt=prompt))


@app.route('/auth/google/callback')
def google_callback():
    """Finish a consent round trip started by /auth/google"""
    expected = session.pop('oauth_state', None)
    intent = session.pop('oauth_intent', 'signin')
    if not expected or request.args.get('state') != expected:
        logger.warning("OAuth callback with missing or mismatched state")
        return jsonify({"error": "Invalid OAuth state"}), 400

    dashboard = g.dashboard
    try:
        credential = oauth.credential_from_callback(request.args)
    except ConsentCancelled:
        credential = None
    except DashboardError as e:
        logger.error(f"Google consent failed: {e}")
        dashboard.context.notify("Error", e.user_message, "destructive")
        return redirect(LOGIN_PATH if intent == "signin" else DASHBOARD_PATH)

    if intent == "signin":
        result = dashboard.sign_in_with_google(CallbackConsent(credential))
        if result.ok:
            remember_dashboard(dashboard)
        return redirect(DASHBOARD_PATH if result.ok else LOGIN_PATH)

    if not dashboard.context.is_authenticated:
        return redirect(LOGIN_PATH)
    consent = CallbackConsent(credential, fresh=(intent == "relink"))
    if intent == "reauth":
        result = dashboard.reconnect_fit(consent)
    else:
        result = dashboard.connect_fit(consent)
    if result.fresh_login_required:
        return redirect(url_for('google_auth', intent='relink'))
    return redirect(DASHBOARD_PATH)


@app.route('/api/fit/disconnect', methods=['POST'])
@login_required
def fit_disconnect():
    result = g.dashboard.disconnect_fit()
    return jsonify(result.to_dict())


# Goals

@app.route('/api/goals', methods=['GET', 'POST'])
@login_required
def goals():
    dashboard = g.dashboard
    dashboard.open()
    if request.method == 'POST':
        result = dashboard.save_goal(request_data())
        return result_response(result, 201)
    return jsonify({"goals": dashboard.list_goals(), "progress": dashboard.goals.progress_overview()})


@app.route('/api/goals/<goal_id>', methods=['PUT', 'DELETE'])
@login_required
def goal(goal_id):
    if request.method == 'DELETE':
        return result_response(g.dashboard.delete_goal(goal_id))
    return result_response(g.dashboard.save_goal(request_data(), goal_id))


@app.route('/api/goals/<goal_id>/toggle', methods=['POST'])
@login_required
def goal_toggle(goal_id):
    return result_response(g.dashboard.toggle_goal(goal_id))


# Habits

@app.route('/api/habits', methods=['GET', 'POST'])
@login_required
def habits():
    dashboard = g.dashboard
    dashboard.open()
    if request.method == 'POST':
        result = dashboard.add_habit(request_data().get('name', ''))
        return result_response(result, 201)
    return jsonify({"habits": dashboard.list_habits()})


@app.route('/api/habits/<habit_id>/days/<int:day_index>', methods=['PUT'])
@login_required
def habit_day(habit_id, day_index):
    value = request_data().get('completed', True)
    return result_response(g.dashboard.set_habit_day(habit_id, day_index, bool(value)))


# Profile

@app.route('/api/profile/step-goal', methods=['GET', 'PUT'])
@login_required
def step_goal():
    if request.method == 'PUT':
        return result_response(g.dashboard.set_step_goal(request_data().get('stepGoal')))
    return result_response(g.dashboard.get_step_goal())


# Google Fit widgets

def fit_response(result):
    if result.ok:
        return jsonify(result.data)
    return jsonify({"error": result.message}), 502


@app.route('/api/fit/today')
@login_required
def fit_today():
    """Today's activity rings (steps and heart points)"""
    return fit_response(g.dashboard.refresh_fit_summary())


@app.route('/api/fit/steps')
@login_required
def fit_steps():
    """Steps today against the user's step goal"""
    return fit_response(g.dashboard.refresh_steps())


@app.route('/api/fit/steps/weekly')
@login_required
def fit_steps_weekly():
    return fit_response(g.dashboard.refresh_weekly_steps())


@app.route('/api/health')
@login_required
def health():
    """Latest body metrics plus the trailing-week activity series"""
    dashboard = g.dashboard
    result = dashboard.refresh_health()
    if result.ok:
        return jsonify(result.data)
    widget = dashboard.widgets["health"]
    return jsonify({"error": result.message, **(widget.data or {})}), 502


# Suggestions

@app.route('/api/suggestions', methods=['POST'])
@login_required
def suggestions():
    data = request_data()
    result = g.dashboard.request_suggestion(data.get('currentGoals', ''), data.get('pastPerformance', ''))
    return result_response(result)


@app.route('/api/dashboard')
@login_required
def api_dashboard():
    """Combined endpoint: refresh every Google Fit widget in parallel, then return full state"""
    dashboard = g.dashboard
    dashboard.open()
    if dashboard.context.fit_token:
        with ThreadPoolExecutor(max_workers=4) as ex:
            futures = {
                ex.submit(dashboard.refresh_health): "health",
                ex.submit(dashboard.refresh_fit_summary): "fitSummary",
                ex.submit(dashboard.refresh_steps): "steps",
                ex.submit(dashboard.refresh_weekly_steps): "weeklySteps",
            }
            for fut in as_completed(futures):
                key = futures[fut]
                try:
                    fut.result()
                except Exception as e:
                    logger.error(f"Dashboard {key} error: {e}")
                    widget = dashboard.widgets[key]
                    widget.status, widget.error = "error", str(e)
    return jsonify(dashboard.state())


@app.errorhandler(AuthError)
def handle_auth_error(e):
    return jsonify({"error": e.user_message}), 401


if __name__ == '__main__':
    logger.info(f"Starting Goal Dashboard on port {FLASK_PORT}")
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)
