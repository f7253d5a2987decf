import logging

from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_login import login_user, logout_user, current_user, login_required

from sitrack import db
from sitrack.models import Profile, utcnow

logger = logging.getLogger(__name__)

auth = Blueprint('auth', __name__)


@auth.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('main.index'))

    if request.method == 'POST':
        username = request.form.get('username', '').strip()
        password = request.form.get('password', '')
        user = Profile.query.filter_by(name=username).first()

        if user and user.check_password(password):
            user.last_login = utcnow()
            db.session.commit()
            login_user(user)
            logger.info("User %s logged in", user.name)
            flash('Login berhasil!', 'success')
            return redirect(url_for('main.index'))

        logger.warning("Failed login attempt for username %r", username)
        flash('Login gagal. Periksa username/password.', 'danger')

    return render_template('auth/login.html')


@auth.route('/logout')
@login_required
def logout():
    logout_user()
    flash('Logout berhasil.', 'success')
    return redirect(url_for('auth.login'))
