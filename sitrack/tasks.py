import logging

from flask import Blueprint, render_template, request, redirect, url_for, flash
from flask_login import login_required, current_user
from sqlalchemy import or_

from sitrack import db
from sitrack.models import Report, TaskAssignment
from sitrack.options import SERVICES
from sitrack.routes import role_required
from sitrack import workflow
from sitrack.workflow import WorkflowError

logger = logging.getLogger(__name__)

bp = Blueprint('tasks', __name__)


def _fail(e, endpoint, **values):
    db.session.rollback()
    flash(e.message, 'danger')
    return redirect(url_for(endpoint, **values))


# --- Koordinator ---

@bp.route('/koordinator')
@login_required
@role_required('Koordinator')
def coordinator_dashboard():
    service_filter = request.args.get('layanan', '').strip()
    status_filter = request.args.get('status', '').strip()
    search_query = request.args.get('q', '').strip().lower()

    handled = db.session.query(TaskAssignment.report_id).filter(
        TaskAssignment.coordinator_id == current_user.id)
    reports = Report.query.filter(or_(
        Report.current_holder == current_user.id,
        Report.status.in_([workflow.IN_PROGRESS, workflow.REVISION_REQUIRED]),
        Report.id.in_(handled),
    )).order_by(Report.created_at.desc()).all()

    rows = []
    for report in reports:
        status = workflow.display_status(report)
        if service_filter and report.layanan != service_filter:
            continue
        if status_filter and status['value'] != status_filter:
            continue
        if search_query and search_query not in (report.hal or '').lower() \
                and search_query not in (report.no_surat or '').lower():
            continue
        rows.append({
            'report': report,
            'status': status,
            'progress': workflow.assignment_progress(report),
        })

    return render_template('tasks/coordinator_dashboard.html',
                           rows=rows,
                           stats=workflow.coordinator_stats(reports),
                           services=SERVICES,
                           display_statuses=workflow.DISPLAY_STATUSES,
                           filters=request.args)


@bp.route('/reports/<int:id>/documents', methods=['POST'])
@login_required
@role_required('Koordinator')
def verify_documents(id):
    report = Report.query.get_or_404(id)
    verification = {doc: request.form.get(f'doc_{idx}') for idx, doc in
                    enumerate(workflow.required_documents(report))}
    try:
        workflow.verify_documents(current_user, report, verification)
    except WorkflowError as e:
        return _fail(e, 'main.report_detail', id=report.id)
    flash('Verifikasi dokumen disimpan.', 'success')
    return redirect(url_for('main.report_detail', id=report.id))


@bp.route('/reports/<int:id>/assign', methods=['POST'])
@login_required
@role_required('Koordinator')
def assign_staff(id):
    report = Report.query.get_or_404(id)
    staff_ids = [int(s) for s in request.form.getlist('staff_ids') if s.isdigit()]
    try:
        workflow.assign_staff(current_user, report, staff_ids,
                              request.form.getlist('todos'), request.form.get('notes', ''))
    except WorkflowError as e:
        return _fail(e, 'main.report_detail', id=report.id)
    flash('Tugas berhasil ditugaskan!', 'success')
    return redirect(url_for('main.report_detail', id=report.id))


@bp.route('/assignments/<int:id>/revision', methods=['POST'])
@login_required
@role_required('Koordinator')
def request_revision(id):
    assignment = TaskAssignment.query.get_or_404(id)
    try:
        workflow.request_revision(current_user, assignment, request.form.get('revision_notes', ''))
    except WorkflowError as e:
        return _fail(e, 'main.report_detail', id=assignment.report_id)
    flash('Permintaan revisi dikirim!', 'warning')
    return redirect(url_for('main.report_detail', id=assignment.report_id))


@bp.route('/reports/<int:id>/forward-tu', methods=['POST'])
@login_required
@role_required('Koordinator')
def forward_to_tu(id):
    report = Report.query.get_or_404(id)
    quick = request.form.get('quick') == '1'
    target = 'tasks.coordinator_dashboard' if quick else 'main.report_detail'
    values = {} if quick else {'id': report.id}
    try:
        workflow.forward_to_tu(current_user, report, quick=quick)
    except WorkflowError as e:
        db.session.rollback()
        flash('Gagal meneruskan laporan: ' + e.message, 'danger')
        return redirect(url_for(target, **values))
    flash('Laporan berhasil diteruskan ke TU!', 'success')
    return redirect(url_for('tasks.coordinator_dashboard'))


# --- Staff ---

@bp.route('/staff')
@login_required
@role_required('Staff')
def staff_dashboard():
    assigned_tasks = (TaskAssignment.query
                      .filter(TaskAssignment.staff_id == current_user.id,
                              TaskAssignment.status.in_([workflow.IN_PROGRESS, workflow.REVISION_REQUIRED]))
                      .order_by(TaskAssignment.created_at.desc())
                      .all())

    selected_task = None
    task_id = request.args.get('task', type=int)
    if task_id is not None:
        selected_task = next((t for t in assigned_tasks if t.id == task_id), None)
        if selected_task is None:
            flash('Tugas tidak ditemukan.', 'warning')

    return render_template('tasks/staff_dashboard.html',
                           assigned_tasks=assigned_tasks,
                           selected_task=selected_task)


@bp.route('/assignments/<int:id>/todo', methods=['POST'])
@login_required
@role_required('Staff')
def toggle_todo(id):
    assignment = TaskAssignment.query.get_or_404(id)
    try:
        workflow.toggle_todo(current_user, assignment, request.form.get('item', ''))
    except WorkflowError as e:
        return _fail(e, 'tasks.staff_dashboard', task=assignment.id)
    return redirect(url_for('tasks.staff_dashboard', task=assignment.id))


@bp.route('/assignments/<int:id>/submit', methods=['POST'])
@login_required
@role_required('Staff')
def submit_work(id):
    assignment = TaskAssignment.query.get_or_404(id)
    try:
        workflow.submit_work(current_user, assignment)
    except WorkflowError as e:
        return _fail(e, 'tasks.staff_dashboard', task=assignment.id)
    flash('Pekerjaan berhasil dikirim untuk review!', 'success')
    return redirect(url_for('tasks.staff_dashboard'))
