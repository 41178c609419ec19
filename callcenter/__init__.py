from flask import Flask

from .extensions import db, login_manager, migrate, rq


def create_app(config_overrides=None):
    """Application factory.

    config_overrides: optional dict applied after config.Config (tests use it
    to point at an in-memory database and run jobs inline).
    """
    app = Flask(__name__)
    app.config.from_object('config.Config')
    if config_overrides:
        app.config.update(config_overrides)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    rq.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from .models.user import User
        return User.query.get(int(user_id))

    # API clients authenticate with "Authorization: Bearer <api_token>"
    @login_manager.request_loader
    def load_user_from_request(request):
        from .models.user import User
        from .utils.decorators import bearer_token
        token = bearer_token()
        if not token:
            return None
        return User.query.filter_by(api_token=token).first()

    from .api import bp as api_bp, voice_bp
    app.register_blueprint(api_bp)
    app.register_blueprint(voice_bp)

    @app.get('/healthz')
    def healthz():
        return {'ok': True}

    return app
