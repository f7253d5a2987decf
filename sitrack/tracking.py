import logging

from flask import Blueprint, jsonify, render_template, request

from sitrack.workflow import COMPLETED, find_report_by_number, status_label

logger = logging.getLogger(__name__)

bp = Blueprint('tracking', __name__)

PROCESS_STEPS = [
    {'id': 'Surat Diterima', 'description': 'Surat masuk dan didaftarkan dalam sistem'},
    {'id': 'Verifikasi Dokumen', 'description': 'Pemeriksaan kelengkapan dan validitas dokumen'},
    {'id': 'Penugasan Staff', 'description': 'Surat diagendakan kepada staff untuk diproses'},
    {'id': 'Proses Pelayanan', 'description': 'Pelaksanaan layanan sesuai jenis permohonan'},
    {'id': 'Selesai', 'description': 'Surat telah selesai diproses dan siap diambil'},
]


def _step_for(entry, index):
    for step in PROCESS_STEPS:
        if step['id'] == entry.action:
            return step['id']
    if index < len(PROCESS_STEPS):
        return PROCESS_STEPS[index]['id']
    return entry.action


def tracking_progress(report, history_count):
    if report.status == COMPLETED:
        return 100
    if history_count == 0:
        return 5
    if history_count >= len(PROCESS_STEPS):
        return 95
    return round(min(history_count / (len(PROCESS_STEPS) - 1) * 95, 95))


def build_tracking(report):
    history = report.workflow_history

    timeline = [
        {
            'step': _step_for(entry, index),
            'action': entry.action,
            'description': entry.notes or 'Proses telah dilaksanakan.',
            'date': entry.created_at.strftime('%d/%m/%Y') if entry.created_at else None,
            'location': entry.actor_name,
            'notes': entry.notes,
        }
        for index, entry in enumerate(history)
    ]

    last_moment = history[-1].created_at if history else report.created_at

    coordinator_notes = [
        {
            'staff_name': a.staff.display_name if a.staff else 'Staff tidak diketahui',
            'note': a.notes,
            'revision_note': a.revision_notes,
        }
        for a in report.task_assignments
        if a.notes or a.revision_notes
    ]

    return {
        'no_surat': report.no_surat,
        'hal': report.hal or 'Tidak ada data',
        'status': status_label(report.status),
        'status_code': report.status,
        'layanan': report.layanan or 'Layanan Umum',
        'progress': tracking_progress(report, len(history)),
        'timeline': timeline,
        'last_update': last_moment.strftime('%d/%m/%y %H:%M') if last_moment else None,
        'coordinator_notes': coordinator_notes,
    }


@bp.route('/track', methods=['GET'])
def track():
    no_surat = request.args.get('no_surat', '').strip()
    result = None
    searched = bool(no_surat)

    if 'no_surat' in request.args and not no_surat:
        return render_template('tracking/track.html', result=None, searched=False,
                               no_surat='', steps=PROCESS_STEPS,
                               error='Nomor surat tidak boleh kosong.')

    if searched:
        report = find_report_by_number(no_surat)
        if report is not None:
            result = build_tracking(report)

    return render_template('tracking/track.html', result=result, searched=searched,
                           no_surat=no_surat, steps=PROCESS_STEPS, error=None)


@bp.route('/api/track', methods=['GET'])
def api_track():
    search = request.args.get('search', '')
    if not search.strip():
        return jsonify({'error': 'Nomor surat diperlukan'}), 400

    try:
        report = find_report_by_number(search)
        if report is None:
            return jsonify({'message': 'Data surat tidak ditemukan'}), 404
        return jsonify(build_tracking(report))
    except Exception as e:
        logger.exception("API Tracking Error: %s", e)
        return jsonify({'error': 'Terjadi kesalahan pada server', 'details': str(e)}), 500
