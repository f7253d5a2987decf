import logging
import re
from collections import Counter
from datetime import datetime
from functools import wraps
from io import BytesIO

import pandas as pd
from flask import Blueprint, render_template, request, redirect, url_for, flash, send_file, abort, current_app
from flask_login import login_required, current_user
from sqlalchemy import or_

from sitrack import db
from sitrack.attachments import attachment_path, remove_files, save_upload
from sitrack.models import Profile, Report, FileAttachment
from sitrack.options import ROLES, SERVICES, TODO_ITEMS
from sitrack import workflow
from sitrack.workflow import WorkflowError

logger = logging.getLogger(__name__)

bp = Blueprint('main', __name__)

DASHBOARDS = {
    'Admin': 'main.users',
    'TU': 'main.tu_dashboard',
    'Koordinator': 'tasks.coordinator_dashboard',
    'Staff': 'tasks.staff_dashboard',
}


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if current_user.role not in roles:
                flash('Anda tidak memiliki akses ke halaman ini.', 'danger')
                return redirect(url_for('main.index'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


@bp.app_context_processor
def inject_helpers():
    return {
        'status_label': workflow.status_label,
        'today': datetime.now(),
    }


@bp.route('/')
@login_required
def index():
    endpoint = DASHBOARDS.get(current_user.role)
    if endpoint is None:
        abort(403)
    return redirect(url_for(endpoint))


def filtered_reports_query(args):
    """Query laporan TU sesuai filter layanan dan pencarian hal / nomor surat."""
    search_query = args.get('q', '').strip()
    layanan = args.get('layanan', '').strip()
    status = args.get('status', '').strip()

    query = Report.query.order_by(Report.created_at.desc())
    if search_query:
        query = query.filter(
            Report.hal.ilike(f'%{search_query}%') |
            Report.no_surat.ilike(f'%{search_query}%')
        )
    if layanan:
        query = query.filter(Report.layanan == layanan)
    if status:
        query = query.filter(Report.status == status)
    return query


@bp.route('/tu', methods=['GET'])
@login_required
@role_required('TU')
def tu_dashboard():
    page = request.args.get('page', 1, type=int)

    all_reports = Report.query.all()
    stats = workflow.tu_stats(all_reports)

    reports_for_finalization = (Report.query
                                .filter_by(status=workflow.PENDING_APPROVAL_TU)
                                .order_by(Report.updated_at.desc())
                                .all())

    query = filtered_reports_query(request.args).filter(Report.status != workflow.PENDING_APPROVAL_TU)
    reports = query.paginate(page=page, per_page=current_app.config['REPORTS_PER_PAGE'], error_out=False)

    return render_template('main/tu_dashboard.html',
                           stats=stats,
                           reports=reports,
                           reports_for_finalization=reports_for_finalization,
                           services=SERVICES,
                           statuses=workflow.STATUS_LABELS,
                           filters=request.args)


@bp.route('/reports/add', methods=['GET', 'POST'])
@login_required
@role_required('TU')
def add_report():
    if request.method == 'POST':
        try:
            report = workflow.register_report(
                current_user,
                request.form.get('no_surat', ''),
                request.form.get('hal', ''),
                request.form.get('layanan', ''),
            )
        except WorkflowError as e:
            flash(e.message, 'danger')
            return render_template('main/report_form.html', report=None, services=SERVICES,
                                   form=request.form), e.status_code
        flash(f'Laporan {report.no_surat} berhasil didaftarkan.', 'success')
        return redirect(url_for('main.tu_dashboard'))

    return render_template('main/report_form.html', report=None, services=SERVICES, form={})


@bp.route('/reports/<int:id>/edit', methods=['GET', 'POST'])
@login_required
@role_required('TU')
def edit_report(id):
    report = Report.query.get_or_404(id)
    if request.method == 'POST':
        try:
            workflow.update_report(
                current_user,
                report,
                request.form.get('no_surat', ''),
                request.form.get('hal', ''),
                request.form.get('layanan', ''),
            )
        except WorkflowError as e:
            db.session.rollback()
            flash(e.message, 'danger')
            return render_template('main/report_form.html', report=report, services=SERVICES,
                                   form=request.form), e.status_code
        flash('Data laporan berhasil diperbarui.', 'success')
        return redirect(url_for('main.tu_dashboard'))

    return render_template('main/report_form.html', report=report, services=SERVICES, form={})


@bp.route('/reports/<int:id>/delete', methods=['POST'])
@login_required
@role_required('TU')
def delete_report(id):
    report = Report.query.get_or_404(id)
    try:
        stored_names = workflow.delete_report(current_user, report)
    except WorkflowError as e:
        flash(e.message, 'danger')
        return redirect(url_for('main.tu_dashboard'))
    remove_files(stored_names)
    flash('Laporan berhasil dihapus.', 'success')
    return redirect(url_for('main.tu_dashboard'))


@bp.route('/reports/<int:id>/forward', methods=['GET', 'POST'])
@login_required
@role_required('TU')
def forward_report(id):
    report = Report.query.get_or_404(id)
    coordinators = Profile.query.filter_by(role='Koordinator').order_by(Profile.full_name).all()

    if request.method == 'POST':
        coordinator = db.session.get(Profile, request.form.get('coordinator_id', type=int) or 0)
        try:
            workflow.forward_to_coordinator(current_user, report, coordinator)
        except WorkflowError as e:
            db.session.rollback()
            flash(e.message, 'danger')
            return redirect(url_for('main.forward_report', id=report.id))
        flash(f'Laporan berhasil diteruskan ke {coordinator.display_name}.', 'success')
        return redirect(url_for('main.tu_dashboard'))

    return render_template('main/forward.html', report=report, coordinators=coordinators)


@bp.route('/reports/<int:id>/finalize', methods=['POST'])
@login_required
@role_required('TU')
def finalize_report(id):
    report = Report.query.get_or_404(id)
    try:
        workflow.finalize_report(current_user, report)
    except WorkflowError as e:
        db.session.rollback()
        flash('Gagal menyelesaikan laporan: ' + e.message, 'danger')
        return redirect(url_for('main.tu_dashboard'))
    flash('Laporan telah diselesaikan.', 'success')
    return redirect(url_for('main.tu_dashboard'))


@bp.route('/reports/<int:id>')
@login_required
@role_required('TU', 'Koordinator', 'Admin')
def report_detail(id):
    report = Report.query.get_or_404(id)
    assigned_ids = {a.staff_id for a in report.task_assignments}
    available_staff = [p for p in Profile.query.filter_by(role='Staff').order_by(Profile.full_name).all()
                       if p.id not in assigned_ids]

    required_docs = workflow.required_documents(report)
    existing = report.task_assignments[0] if report.task_assignments else None

    return render_template('main/report_detail.html',
                           report=report,
                           required_docs=required_docs,
                           documents_complete=workflow.documents_complete(report),
                           available_staff=available_staff,
                           todo_items=TODO_ITEMS,
                           selected_todos=existing.todo_list if existing else [],
                           default_notes=existing.notes if existing and existing.notes else '',
                           all_tasks_completed=bool(report.task_assignments) and all(
                               a.status == workflow.COMPLETED for a in report.task_assignments),
                           display_status=workflow.display_status(report))


@bp.route('/reports/<int:id>/attachments', methods=['POST'])
@login_required
@role_required('TU', 'Koordinator')
def upload_attachment(id):
    report = Report.query.get_or_404(id)
    try:
        attachment = save_upload(current_user, report, request.files.get('file'))
    except WorkflowError as e:
        flash(e.message, 'danger')
    else:
        flash(f'File {attachment.file_name} berhasil diunggah.', 'success')
    return redirect(url_for('main.report_detail', id=report.id))


@bp.route('/attachments/<int:id>')
@login_required
def download_attachment(id):
    attachment = FileAttachment.query.get_or_404(id)
    if current_user.role == 'Staff' and current_user.id not in {
            a.staff_id for a in attachment.report.task_assignments}:
        abort(403)
    try:
        return send_file(attachment_path(attachment),
                         mimetype=attachment.mime_type,
                         download_name=attachment.file_name,
                         as_attachment=request.args.get('view') != '1')
    except FileNotFoundError:
        logger.warning("Attachment file missing on disk: %s", attachment.stored_name)
        abort(404)


@bp.route('/reports/export')
@login_required
@role_required('TU', 'Admin')
def export_reports():
    reports = filtered_reports_query(request.args).all()

    data = []
    for r in reports:
        data.append({
            'No Surat': r.no_surat,
            'Hal': r.hal,
            'Layanan': r.layanan,
            'Dari': r.dari or '',
            'Status': workflow.status_label(r.status),
            'Pemegang Saat Ini': r.holder.display_name if r.holder else '-',
            'Jumlah Staff': len(r.task_assignments),
            'Tanggal Masuk': r.created_at.strftime('%Y-%m-%d'),
            'Terakhir Diperbarui': r.updated_at.strftime('%Y-%m-%d %H:%M') if r.updated_at else '',
        })

    df = pd.DataFrame(data, columns=['No Surat', 'Hal', 'Layanan', 'Dari', 'Status', 'Pemegang Saat Ini',
                                     'Jumlah Staff', 'Tanggal Masuk', 'Terakhir Diperbarui'])
    output = BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        df.to_excel(writer, index=False, sheet_name='Laporan Surat')

        workbook = writer.book
        worksheet = writer.sheets['Laporan Surat']
        wrap_format = workbook.add_format({'text_wrap': True, 'valign': 'top'})

        for idx, col in enumerate(df.columns):
            max_len = max(df[col].astype(str).map(len).max() if not df.empty else 0, len(col)) + 2
            # Hanya wrap text untuk kolom Hal
            if col == 'Hal':
                worksheet.set_column(idx, idx, min(max_len, 50), wrap_format)
            else:
                worksheet.set_column(idx, idx, max_len)
    output.seek(0)

    filename = f'laporan_surat_{datetime.now().strftime("%Y%m%d_%H%M%S")}.xlsx'
    logger.info("Exported %d reports for %s", len(data), current_user.name)

    return send_file(
        output,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        download_name=filename,
        as_attachment=True
    )


# --- Manajemen pengguna (Admin) ---

def sanitize_username(value):
    # Hanya huruf dan angka, tanpa spasi/simbol
    return re.sub(r'[^a-zA-Z0-9]', '', value or '')


def _validate_user_form(form, user=None):
    name = sanitize_username(form.get('name'))
    full_name = (form.get('full_name') or '').strip()
    role = form.get('role', 'Staff')
    password = form.get('password') or ''

    if not name:
        return None, 'Username/ID Pengguna wajib diisi.'
    if not full_name:
        return None, 'Nama lengkap wajib diisi.'
    if role not in ROLES:
        return None, 'Role tidak valid.'
    if user is None and len(password) < 6:
        return None, 'Password minimal 6 karakter.'
    if user is not None and password and len(password) < 6:
        return None, 'Password minimal 6 karakter.'

    existing = Profile.query.filter_by(name=name).first()
    if existing is not None and existing is not user:
        return None, 'Username sudah digunakan.'
    return {'name': name, 'full_name': full_name, 'role': role, 'password': password}, None


@bp.route('/users')
@login_required
@role_required('Admin')
def users():
    page = request.args.get('page', 1, type=int)
    query = Profile.query

    search_query = request.args.get('q')
    if search_query:
        query = query.filter(or_(
            Profile.name.ilike(f'%{search_query}%'),
            Profile.full_name.ilike(f'%{search_query}%'),
            Profile.role.ilike(f'%{search_query}%'),
        ))

    users = query.order_by(Profile.created_at.desc()).paginate(page=page, per_page=10, error_out=False)

    role_counts = Counter(role for (role,) in db.session.query(Profile.role).all())
    stats = {
        'total': sum(role_counts.values()),
        'admin': role_counts['Admin'],
        'tu': role_counts['TU'],
        'koordinator': role_counts['Koordinator'],
        'staff': role_counts['Staff'],
    }
    return render_template('main/users.html', users=users, stats=stats)


@bp.route('/users/add', methods=['GET', 'POST'])
@login_required
@role_required('Admin')
def add_user():
    if request.method == 'POST':
        data, error = _validate_user_form(request.form)
        if error:
            flash(error, 'danger')
            return render_template('main/user_form.html', user=None, roles=ROLES, form=request.form), 400

        user = Profile(name=data['name'], full_name=data['full_name'], role=data['role'])
        user.set_password(data['password'])

        db.session.add(user)
        db.session.commit()
        logger.info("User %s (%s) created by %s", user.name, user.role, current_user.name)
        flash('Pengguna berhasil disimpan.', 'success')
        return redirect(url_for('main.users'))

    return render_template('main/user_form.html', user=None, roles=ROLES, form={})


@bp.route('/users/edit/<int:id>', methods=['GET', 'POST'])
@login_required
@role_required('Admin')
def edit_user(id):
    user = Profile.query.get_or_404(id)
    if request.method == 'POST':
        data, error = _validate_user_form(request.form, user=user)
        if not error and user.id == current_user.id and data['role'] != 'Admin':
            error = 'Anda tidak dapat menghapus role Admin dari akun sendiri.'
        if not error and user.assignments and data['role'] != 'Staff':
            error = 'Pengguna masih memiliki tugas pada laporan sehingga role tidak dapat diubah.'
        if error:
            flash(error, 'danger')
            return render_template('main/user_form.html', user=user, roles=ROLES, form=request.form), 400

        user.name = data['name']
        user.full_name = data['full_name']
        user.role = data['role']
        if data['password']:
            user.set_password(data['password'])
        db.session.commit()
        logger.info("User %s updated by %s", user.name, current_user.name)
        flash('Pengguna berhasil diperbarui.', 'success')
        return redirect(url_for('main.users'))

    return render_template('main/user_form.html', user=user, roles=ROLES, form={})


@bp.route('/users/delete/<int:id>', methods=['POST'])
@login_required
@role_required('Admin')
def delete_user(id):
    user = Profile.query.get_or_404(id)
    if user.id == current_user.id:
        flash('Anda tidak dapat menghapus akun sendiri.', 'danger')
        return redirect(url_for('main.users'))
    if user.assignments:
        flash('Pengguna masih memiliki tugas pada laporan dan tidak dapat dihapus.', 'danger')
        return redirect(url_for('main.users'))

    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted by %s", user.name, current_user.name)
    flash('Pengguna berhasil dihapus.', 'success')
    return redirect(url_for('main.users'))
