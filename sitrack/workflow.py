"""Status progression of a report and the operations that move it.

Every status change goes through :func:`transition`, so a report can only
follow the path::

    draft -> in-progress -> revision-required -> pending-approval-tu -> completed

Each operation commits its own changes and appends one
:class:`~sitrack.models.WorkflowHistory` row describing what happened.
"""
import logging
import time
from collections import Counter

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from sitrack import db
from sitrack.models import Profile, Report, TaskAssignment, WorkflowHistory, utcnow
from sitrack.options import DOCUMENT_MISSING, DOCUMENT_PRESENT, DOCUMENT_REQUIREMENTS, SERVICES, TODO_ITEMS

logger = logging.getLogger(__name__)

DRAFT = 'draft'
IN_PROGRESS = 'in-progress'
REVISION_REQUIRED = 'revision-required'
PENDING_APPROVAL_TU = 'pending-approval-tu'
COMPLETED = 'completed'

STATUS_LABELS = {
    DRAFT: 'Draft',
    IN_PROGRESS: 'Dalam Proses',
    REVISION_REQUIRED: 'Revisi',
    PENDING_APPROVAL_TU: 'Review Koordinator Selesai',
    COMPLETED: 'Selesai',
}

TRANSITIONS = {
    DRAFT: {IN_PROGRESS},
    IN_PROGRESS: {IN_PROGRESS, REVISION_REQUIRED, PENDING_APPROVAL_TU},
    REVISION_REQUIRED: {REVISION_REQUIRED, IN_PROGRESS},
    PENDING_APPROVAL_TU: {COMPLETED},
    COMPLETED: set(),
}

# Status tampilan di dashboard koordinator
DISPLAY_STATUSES = [
    ('needs-action', 'Perlu Tindakan'),
    (REVISION_REQUIRED, 'Perlu Revisi'),
    ('pending-review', 'Menunggu Review'),
    (IN_PROGRESS, 'Dikerjakan Staff'),
    (COMPLETED, 'Selesai'),
]


class WorkflowError(Exception):
    """A workflow rule was violated; ``message`` is shown to the user."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def status_label(status):
    return STATUS_LABELS.get(status, status)


def can_transition(current, target):
    return target in TRANSITIONS.get(current, set())


def transition(report, target):
    if not can_transition(report.status, target):
        logger.warning("Rejected transition of report %s: %s -> %s", report.no_surat, report.status, target)
        raise WorkflowError(
            f'Status laporan tidak dapat diubah dari "{status_label(report.status)}" '
            f'menjadi "{status_label(target)}".',
            status_code=409,
        )
    report.status = target


def record_history(report, actor, action, notes=None, status=None):
    entry = WorkflowHistory(
        report=report,
        user_id=actor.id if actor is not None else None,
        action=action,
        notes=notes,
        status=status or report.status,
    )
    db.session.add(entry)
    return entry


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database error while saving workflow change")
        raise


def _require_role(actor, *roles):
    if actor is None or actor.role not in roles:
        raise WorkflowError('Anda tidak memiliki akses untuk tindakan ini.', status_code=403)


def _names(profiles):
    return ', '.join(p.display_name for p in profiles)


def find_report_by_number(no_surat):
    """Case-insensitive exact lookup on the letter number."""
    if not no_surat or not no_surat.strip():
        return None
    return Report.query.filter(func.lower(Report.no_surat) == no_surat.strip().lower()).first()


def generate_no_surat():
    stamp = int(time.time() * 1000)
    while find_report_by_number(f'NS-{stamp}') is not None:
        stamp += 1
    return f'NS-{stamp}'


def _validate_report_fields(no_surat, hal, layanan, current=None):
    if not hal or not hal.strip():
        raise WorkflowError('Perihal (hal) wajib diisi.')
    if layanan not in SERVICES:
        raise WorkflowError('Jenis layanan tidak valid.')
    if no_surat:
        existing = find_report_by_number(no_surat)
        if existing is not None and existing is not current:
            raise WorkflowError(f'Nomor surat "{no_surat}" sudah terdaftar.', status_code=409)


# --- Operasi TU ---

def register_report(actor, no_surat, hal, layanan):
    _require_role(actor, 'TU')
    no_surat = (no_surat or '').strip()
    _validate_report_fields(no_surat, hal, layanan)

    report = Report(
        no_surat=no_surat or generate_no_surat(),
        hal=hal.strip(),
        layanan=layanan,
        dari=actor.display_name or 'Pengguna TU',
        status=DRAFT,
        created_by=actor.id,
        document_verification={},
    )
    db.session.add(report)
    record_history(report, actor, 'Surat Diterima', 'Surat masuk dan didaftarkan dalam sistem.', DRAFT)
    _commit()
    logger.info("Report %s registered by %s", report.no_surat, actor.name)
    return report


def update_report(actor, report, no_surat, hal, layanan):
    _require_role(actor, 'TU')
    if report.status == COMPLETED:
        raise WorkflowError('Laporan yang sudah selesai tidak dapat diubah.', status_code=409)
    no_surat = (no_surat or '').strip()
    _validate_report_fields(no_surat, hal, layanan, current=report)

    if no_surat:
        report.no_surat = no_surat
    report.hal = hal.strip()
    if report.layanan != layanan:
        report.layanan = layanan
        report.document_verification = {}
    _commit()
    logger.info("Report %s updated by %s", report.no_surat, actor.name)
    return report


def delete_report(actor, report):
    _require_role(actor, 'TU')
    if report.status == COMPLETED:
        raise WorkflowError('Laporan yang sudah diarsipkan tidak dapat dihapus.', status_code=409)
    no_surat = report.no_surat
    stored_names = [a.stored_name for a in report.attachments]
    db.session.delete(report)
    _commit()
    logger.info("Report %s deleted by %s", no_surat, actor.name)
    return stored_names


def forward_to_coordinator(actor, report, coordinator):
    _require_role(actor, 'TU')
    if coordinator is None or coordinator.role != 'Koordinator':
        raise WorkflowError('Koordinator tidak ditemukan.', status_code=404)
    if report.status != DRAFT:
        raise WorkflowError('Hanya laporan berstatus Draft yang dapat diteruskan ke koordinator.', status_code=409)

    transition(report, IN_PROGRESS)
    report.current_holder = coordinator.id
    record_history(report, actor, 'Verifikasi Dokumen',
                   f'Laporan diteruskan ke {coordinator.display_name} untuk pengecekan dokumen.', IN_PROGRESS)
    _commit()
    logger.info("Report %s forwarded to coordinator %s", report.no_surat, coordinator.name)
    return report


def finalize_report(actor, report):
    _require_role(actor, 'TU')
    transition(report, COMPLETED)
    report.current_holder = None
    record_history(report, actor, 'Selesai', 'Laporan telah final dan diarsipkan.', COMPLETED)
    _commit()
    logger.info("Report %s finalized by %s", report.no_surat, actor.name)
    return report


# --- Operasi Koordinator ---

def required_documents(report):
    return DOCUMENT_REQUIREMENTS.get(report.layanan, [])


def documents_complete(report):
    required = required_documents(report)
    verification = report.document_verification or {}
    return all(verification.get(doc) == DOCUMENT_PRESENT for doc in required)


def verify_documents(actor, report, verification):
    _require_role(actor, 'Koordinator')
    if report.status not in (IN_PROGRESS, REVISION_REQUIRED):
        raise WorkflowError('Dokumen hanya dapat diverifikasi saat laporan sedang diproses.', status_code=409)
    report.document_verification = {
        doc: (DOCUMENT_PRESENT if verification.get(doc) == DOCUMENT_PRESENT else DOCUMENT_MISSING)
        for doc in required_documents(report)
    }
    _commit()
    return report


def assign_staff(actor, report, staff_ids, todo_list, notes=''):
    _require_role(actor, 'Koordinator')
    if report.status not in (IN_PROGRESS, REVISION_REQUIRED):
        raise WorkflowError('Laporan belum diteruskan ke koordinator atau sudah selesai.', status_code=409)
    if not staff_ids:
        raise WorkflowError('Pilih minimal satu staff untuk ditugaskan.')
    if not documents_complete(report):
        raise WorkflowError('Semua dokumen wajib harus berstatus "Ada" sebelum penugasan.')

    unknown_todos = [t for t in todo_list if t not in TODO_ITEMS]
    if unknown_todos:
        raise WorkflowError(f'Tugas tidak dikenal: {", ".join(unknown_todos)}.')

    already_assigned = {a.staff_id for a in report.task_assignments}
    staff = Profile.query.filter(Profile.id.in_(staff_ids)).all()
    if len(staff) != len(set(staff_ids)) or any(s.role != 'Staff' for s in staff):
        raise WorkflowError('Staff yang dipilih tidak valid.')
    if any(s.id in already_assigned for s in staff):
        raise WorkflowError('Staff sudah ditugaskan pada laporan ini.', status_code=409)

    first_assignment = not report.task_assignments
    for member in staff:
        db.session.add(TaskAssignment(
            report=report,
            staff_id=member.id,
            coordinator_id=actor.id,
            todo_list=list(todo_list),
            completed_tasks=[],
            status=IN_PROGRESS,
            notes=(notes or '').strip() or None,
        ))

    transition(report, REVISION_REQUIRED if report.status == REVISION_REQUIRED else IN_PROGRESS)
    report.current_holder = actor.id
    action = 'Penugasan Staff' if first_assignment else 'Staff tambahan ditugaskan'
    prefix = 'Ditugaskan kepada' if first_assignment else 'Menambahkan staff'
    record_history(report, actor, action, f'{prefix}: {_names(staff)}.')
    _commit()
    logger.info("Report %s assigned to %s", report.no_surat, [s.name for s in staff])
    return report


def request_revision(actor, assignment, revision_notes):
    _require_role(actor, 'Koordinator')
    revision_notes = (revision_notes or '').strip()
    if not revision_notes:
        raise WorkflowError('Pilih staff dan berikan catatan revisi!')
    if assignment.status not in (IN_PROGRESS, COMPLETED):
        raise WorkflowError('Tugas ini sedang dalam revisi.', status_code=409)

    report = assignment.report
    transition(report, REVISION_REQUIRED)
    assignment.status = REVISION_REQUIRED
    assignment.revision_notes = revision_notes
    assignment.completed_tasks = []
    assignment.progress = 0
    assignment.completed_at = None
    record_history(report, actor, 'Permintaan Revisi',
                   f'Revisi diminta untuk staff: {assignment.staff.display_name}. Catatan: {revision_notes}',
                   REVISION_REQUIRED)
    _commit()
    logger.info("Revision requested on report %s for staff %s", report.no_surat, assignment.staff.name)
    return assignment


def forward_to_tu(actor, report, quick=False):
    _require_role(actor, 'Koordinator')
    assignments = report.task_assignments
    if not assignments or any(a.status != COMPLETED for a in assignments):
        raise WorkflowError('Semua tugas staff harus selesai sebelum diteruskan ke TU.', status_code=409)

    transition(report, PENDING_APPROVAL_TU)
    report.current_holder = None
    action = 'Laporan disetujui dan diteruskan ke TU'
    if quick:
        action += ' via Aksi Cepat'
        notes = 'Laporan disetujui oleh Koordinator dari dashboard.'
    else:
        notes = 'Semua tugas telah selesai, laporan diteruskan untuk persetujuan TU.'
    record_history(report, actor, action, notes, PENDING_APPROVAL_TU)
    _commit()
    logger.info("Report %s forwarded to TU by %s", report.no_surat, actor.name)
    return report


# --- Operasi Staff ---

def _require_owner(actor, assignment):
    _require_role(actor, 'Staff')
    if assignment.staff_id != actor.id:
        raise WorkflowError('Tugas ini bukan milik Anda.', status_code=403)


def toggle_todo(actor, assignment, item):
    _require_owner(actor, assignment)
    if assignment.status not in (IN_PROGRESS, REVISION_REQUIRED):
        raise WorkflowError('Tugas ini sudah dikirim.', status_code=409)
    todo_list = assignment.todo_list or []
    if item not in todo_list:
        raise WorkflowError('Item tugas tidak ditemukan.', status_code=404)

    done = list(assignment.completed_tasks or [])
    if item in done:
        done.remove(item)
    else:
        done.append(item)
    assignment.completed_tasks = done
    assignment.progress = round(len(done) / len(todo_list) * 100)
    _commit()
    return assignment


def submit_work(actor, assignment):
    _require_owner(actor, assignment)
    if assignment.status not in (IN_PROGRESS, REVISION_REQUIRED):
        raise WorkflowError('Tugas ini sudah dikirim.', status_code=409)
    if not assignment.all_todos_done:
        raise WorkflowError('Selesaikan semua item tugas sebelum mengirim pekerjaan.')

    report = assignment.report
    was_revision = assignment.status == REVISION_REQUIRED
    assignment.status = COMPLETED
    assignment.progress = 100
    assignment.completed_at = utcnow()

    if report.status == REVISION_REQUIRED and not any(
            a.status == REVISION_REQUIRED for a in report.task_assignments):
        transition(report, IN_PROGRESS)

    notes = f'Pekerjaan {"revisi " if was_revision else ""}dikirim oleh {actor.display_name} untuk direview.'
    record_history(report, actor, 'Proses Pelayanan', notes)
    _commit()
    logger.info("Staff %s submitted work for report %s", actor.name, report.no_surat)
    return assignment


# --- Tampilan turunan ---

def display_status(report):
    assignments = report.task_assignments
    if any(a.status == REVISION_REQUIRED for a in assignments):
        return {'value': REVISION_REQUIRED, 'text': 'Perlu Revisi'}
    if report.status == COMPLETED:
        return {'value': COMPLETED, 'text': 'Selesai'}
    if report.status == PENDING_APPROVAL_TU:
        return {'value': PENDING_APPROVAL_TU, 'text': status_label(PENDING_APPROVAL_TU)}
    if assignments and all(a.status == COMPLETED for a in assignments):
        return {'value': 'pending-review', 'text': 'Menunggu Review'}
    if report.status == IN_PROGRESS and not assignments:
        return {'value': 'needs-action', 'text': 'Perlu Tindakan'}
    if report.status == IN_PROGRESS:
        return {'value': IN_PROGRESS, 'text': 'Dikerjakan Staff'}
    return {'value': report.status, 'text': status_label(report.status)}


def assignment_progress(report):
    assignments = report.task_assignments
    if not assignments:
        return 100 if report.status == COMPLETED else 0
    done = sum(1 for a in assignments if a.status == COMPLETED)
    return round(done / len(assignments) * 100)


def tu_stats(reports):
    counts = Counter(r.status for r in reports)
    return {
        'total': len(reports),
        'menunggu_verifikasi': counts[DRAFT],
        'dalam_proses': counts[IN_PROGRESS] + counts[PENDING_APPROVAL_TU],
        'selesai': counts[COMPLETED],
        'dikembalikan': counts[REVISION_REQUIRED],
    }


def coordinator_stats(reports):
    counts = Counter(display_status(r)['value'] for r in reports)
    return {
        'total': len(reports),
        'perlu_tindakan': counts['needs-action'],
        'selesai': counts[COMPLETED],
        'revisi': counts[REVISION_REQUIRED],
    }
