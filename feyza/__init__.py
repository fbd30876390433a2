import os
import logging
from flask import Flask
from .config import Config


def create_app(config_object=None):
    # Templates resolve from project root (one level up from this package)
    root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
    templates_dir = os.path.join(root_dir, 'templates')
    app = Flask(__name__, template_folder=templates_dir)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='[%(asctime)s] %(levelname)s in %(name)s: %(message)s',
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from .auth import auth_bp
    from .trust import trust_bp
    from .lender import lender_bp
    from .vouching import vouching_bp
    from .loans import loans_bp
    from .payments import payments_bp
    from .notification import notification_bp
    from .core import core_bp
    from .guest import guest_bp
    from .admin import admin_bp
    from .business import business_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(trust_bp)
    app.register_blueprint(lender_bp)
    app.register_blueprint(vouching_bp)
    app.register_blueprint(loans_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(core_bp)
    app.register_blueprint(guest_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(business_bp)

    from .cli import register_cli
    register_cli(app)

    return app
