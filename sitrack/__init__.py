import logging
import os

from flask import Flask, flash, redirect, render_template, request, url_for
from flask_login import LoginManager, current_user
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


def configure_logging(app):
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    app.logger.setLevel(logging.getLogger().level)


def create_app(config_class='sitrack.config.Config'):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    # Inisialisasi ekstensi
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'
    login_manager.login_message = 'Silakan login terlebih dahulu.'
    login_manager.login_message_category = 'warning'

    # Import model di sini agar dikenali oleh Alembic (penting untuk autogenerate)
    from sitrack import models  # noqa: F401

    # Registrasi blueprint
    from sitrack.routes import bp as main_bp
    from sitrack.auth import auth as auth_bp
    from sitrack.tasks import bp as tasks_bp
    from sitrack.tracking import bp as tracking_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(tracking_bp)

    from sitrack.seed import seed_command
    app.cli.add_command(seed_command)

    register_error_handlers(app)

    return app


def register_error_handlers(app):
    @app.errorhandler(403)
    def handle_forbidden(error):
        app.logger.warning(
            "403 Forbidden: path=%s user=%s reason=%s",
            request.path,
            current_user.get_id() if current_user.is_authenticated else None,
            getattr(error, "description", ""),
        )
        return render_template('errors/error.html', code=403,
                               message='Anda tidak memiliki akses ke halaman ini.'), 403

    @app.errorhandler(404)
    def handle_not_found(error):
        return render_template('errors/error.html', code=404,
                               message='Halaman atau data tidak ditemukan.'), 404

    @app.errorhandler(413)
    def handle_too_large(error):
        flash('Ukuran file melebihi batas 10 MB.', 'danger')
        return redirect(request.referrer or url_for('main.index'))


@login_manager.user_loader
def load_user(user_id):
    from sitrack.models import Profile
    return db.session.get(Profile, int(user_id))
