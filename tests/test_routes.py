"""
Tests for the dashboards and report actions of each role

Run with: pytest tests/test_routes.py -v
"""

import os
from io import BytesIO

import pandas as pd
import pytest
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage

from sitrack import db
from sitrack.attachments import save_upload
from sitrack.models import FileAttachment, Profile, Report, TaskAssignment
from sitrack import workflow

from tests.factories import complete_assignment, make_assigned_report, make_report, profile_id


def build(app, builder, **kwargs):
    """Run ``builder`` inside its own app context and return the report id."""
    with app.app_context():
        profiles = {p.name: p for p in Profile.query.all()}
        return builder(profiles, **kwargs).id


def fetch(app, model, id):
    with app.app_context():
        obj = db.session.get(model, id)
        if obj is not None:
            db.session.expunge(obj)
        return obj


class TestAccess:

    def test_anonymous_is_sent_to_login(self, client):
        response = client.get('/')
        assert response.status_code == 302
        assert '/login' in response.location

    @pytest.mark.parametrize('username,target', [
        ('admin', '/users'),
        ('tu', '/tu'),
        ('koor', '/koordinator'),
        ('staff1', '/staff'),
    ])
    def test_index_dispatches_by_role(self, login, username, target):
        response = login(username).get('/')
        assert response.status_code == 302
        assert response.location.endswith(target)

    def test_wrong_role_is_redirected(self, login):
        response = login('staff1').get('/tu')
        assert response.status_code == 302
        assert response.location.endswith('/')

    def test_failed_login(self, client):
        response = client.post('/login', data={'username': 'tu', 'password': 'salah'})
        assert response.status_code == 200
        assert 'Login gagal' in response.get_data(as_text=True)

    def test_login_records_last_login(self, app, login):
        login('tu')
        with app.app_context():
            assert Profile.query.filter_by(name='tu').one().last_login is not None

    def test_logout(self, login):
        client = login('tu')
        assert client.get('/logout').status_code == 302
        assert client.get('/tu').status_code == 302


class TestTuRoutes:

    def test_dashboard_lists_reports(self, app, login):
        build(app, make_report, no_surat='TU/001')
        body = login('tu').get('/tu').get_data(as_text=True)
        assert 'TU/001' in body
        assert 'Dashboard Tata Usaha' in body

    def test_dashboard_filters(self, app, login):
        build(app, make_report, no_surat='TU/001', hal='Legalisir ijazah', layanan='Legalisir Dokumen')
        build(app, make_report, no_surat='TU/002', hal='Data curah hujan', layanan='Permohonan Data')
        client = login('tu')

        body = client.get('/tu?q=curah').get_data(as_text=True)
        assert 'TU/002' in body and 'TU/001' not in body

        body = client.get('/tu?layanan=Legalisir+Dokumen').get_data(as_text=True)
        assert 'TU/001' in body and 'TU/002' not in body

    def test_add_report(self, app, login):
        response = login('tu').post('/reports/add', data={
            'no_surat': 'TU/010', 'hal': 'Permohonan data', 'layanan': 'Permohonan Data'})
        assert response.status_code == 302

        with app.app_context():
            report = Report.query.filter_by(no_surat='TU/010').one()
            assert report.status == 'draft'
            assert report.creator.name == 'tu'

    def test_add_duplicate_report(self, app, login):
        build(app, make_report, no_surat='TU/011')
        response = login('tu').post('/reports/add', data={
            'no_surat': 'tu/011', 'hal': 'Lagi', 'layanan': 'Layanan Umum'})
        assert response.status_code == 409
        assert 'sudah terdaftar' in response.get_data(as_text=True)

    def test_edit_report(self, app, login):
        report_id = build(app, make_report)
        response = login('tu').post(f'/reports/{report_id}/edit', data={
            'no_surat': 'B-001/2025', 'hal': 'Hal diperbarui', 'layanan': 'Konsultasi Teknis'})
        assert response.status_code == 302
        assert fetch(app, Report, report_id).hal == 'Hal diperbarui'

    def test_delete_report(self, app, login):
        report_id = build(app, make_report)
        response = login('tu').post(f'/reports/{report_id}/delete')
        assert response.status_code == 302
        assert fetch(app, Report, report_id) is None

    def test_forward_report(self, app, login):
        report_id = build(app, make_report)
        koor_id = profile_id(app, 'koor')
        client = login('tu')

        assert 'Budi Santoso' in client.get(f'/reports/{report_id}/forward').get_data(as_text=True)
        response = client.post(f'/reports/{report_id}/forward', data={'coordinator_id': koor_id})
        assert response.status_code == 302

        report = fetch(app, Report, report_id)
        assert report.status == 'in-progress'
        assert report.current_holder == koor_id

    def test_forward_to_unknown_coordinator(self, app, login):
        report_id = build(app, make_report)
        response = login('tu').post(f'/reports/{report_id}/forward', data={'coordinator_id': 9999},
                                    follow_redirects=True)
        assert 'Koordinator tidak ditemukan.' in response.get_data(as_text=True)
        assert fetch(app, Report, report_id).status == 'draft'

    def test_finalize_report(self, app, login):
        def ready(profiles):
            report = make_assigned_report(profiles)
            complete_assignment(profiles, report.task_assignments[0])
            workflow.forward_to_tu(profiles['koor'], report)
            return report

        report_id = build(app, ready)
        client = login('tu')
        assert 'Menunggu Finalisasi' in client.get('/tu').get_data(as_text=True)

        assert client.post(f'/reports/{report_id}/finalize').status_code == 302
        assert fetch(app, Report, report_id).status == 'completed'

    def test_finalize_too_early(self, app, login):
        report_id = build(app, make_report)
        response = login('tu').post(f'/reports/{report_id}/finalize', follow_redirects=True)
        assert 'Gagal menyelesaikan laporan' in response.get_data(as_text=True)

    def test_missing_report(self, login):
        assert login('tu').get('/reports/424242').status_code == 404


class TestCoordinatorRoutes:

    def test_dashboard_shows_forwarded_reports(self, app, login):
        def forwarded(profiles):
            report = make_report(profiles, no_surat='K/001')
            workflow.forward_to_coordinator(profiles['tu'], report, profiles['koor'])
            return report

        build(app, forwarded)
        build(app, make_report, no_surat='K/DRAFT')
        body = login('koor').get('/koordinator').get_data(as_text=True)

        assert 'K/001' in body
        assert 'Perlu Tindakan' in body
        assert 'K/DRAFT' not in body

    def test_dashboard_status_filter(self, app, login):
        build(app, make_assigned_report, no_surat='K/002')
        client = login('koor')

        assert 'K/002' in client.get('/koordinator?status=in-progress').get_data(as_text=True)
        assert 'K/002' not in client.get('/koordinator?status=needs-action').get_data(as_text=True)

    def test_verify_and_assign(self, app, login):
        def forwarded(profiles):
            report = make_report(profiles)
            workflow.forward_to_coordinator(profiles['tu'], report, profiles['koor'])
            return report

        report_id = build(app, forwarded)
        staff_id = profile_id(app, 'staff1')
        client = login('koor')

        assert client.get(f'/reports/{report_id}').status_code == 200
        client.post(f'/reports/{report_id}/documents', data={'doc_0': 'Ada'})
        assert fetch(app, Report, report_id).document_verification == {'Surat Permohonan': 'Ada'}

        response = client.post(f'/reports/{report_id}/assign', data={
            'staff_ids': [str(staff_id)],
            'todos': ['Periksa kelengkapan berkas', 'Arsipkan dokumen'],
            'notes': 'Tolong segera',
        })
        assert response.status_code == 302

        with app.app_context():
            assignment = TaskAssignment.query.filter_by(report_id=report_id).one()
            assert assignment.staff_id == staff_id
            assert assignment.todo_list == ['Periksa kelengkapan berkas', 'Arsipkan dokumen']
            assert assignment.notes == 'Tolong segera'

    def test_assign_without_documents(self, app, login):
        def forwarded(profiles):
            report = make_report(profiles)
            workflow.forward_to_coordinator(profiles['tu'], report, profiles['koor'])
            return report

        report_id = build(app, forwarded)
        response = login('koor').post(f'/reports/{report_id}/assign', data={
            'staff_ids': [str(profile_id(app, 'staff1'))]}, follow_redirects=True)

        assert 'Semua dokumen wajib' in response.get_data(as_text=True)
        with app.app_context():
            assert TaskAssignment.query.filter_by(report_id=report_id).count() == 0

    def test_request_revision(self, app, login):
        report_id = build(app, make_assigned_report)
        with app.app_context():
            assignment_id = TaskAssignment.query.filter_by(report_id=report_id).one().id

        login('koor').post(f'/assignments/{assignment_id}/revision', data={'revision_notes': 'Cek ulang'})

        assert fetch(app, TaskAssignment, assignment_id).revision_notes == 'Cek ulang'
        assert fetch(app, Report, report_id).status == 'revision-required'

    def test_quick_forward_to_tu(self, app, login):
        def done(profiles):
            report = make_assigned_report(profiles)
            complete_assignment(profiles, report.task_assignments[0])
            return report

        report_id = build(app, done)
        client = login('koor')
        assert 'Teruskan ke TU' in client.get('/koordinator').get_data(as_text=True)

        response = client.post(f'/reports/{report_id}/forward-tu', data={'quick': '1'})
        assert response.location.endswith('/koordinator')
        assert fetch(app, Report, report_id).status == 'pending-approval-tu'

    def test_forward_to_tu_with_open_tasks(self, app, login):
        report_id = build(app, make_assigned_report)
        response = login('koor').post(f'/reports/{report_id}/forward-tu', follow_redirects=True)

        assert 'Gagal meneruskan laporan' in response.get_data(as_text=True)
        assert fetch(app, Report, report_id).status == 'in-progress'


class TestStaffRoutes:

    def _assignment_id(self, app, report_id):
        with app.app_context():
            return TaskAssignment.query.filter_by(report_id=report_id).one().id

    def test_dashboard_lists_tasks(self, app, login):
        report_id = build(app, make_assigned_report, no_surat='ST/001')
        assignment_id = self._assignment_id(app, report_id)
        client = login('staff1')

        assert 'ST/001' in client.get('/staff').get_data(as_text=True)
        body = client.get(f'/staff?task={assignment_id}').get_data(as_text=True)
        assert 'Periksa kelengkapan berkas' in body
        assert 'Segera diproses' in body

        assert 'ST/001' not in login('staff2').get('/staff').get_data(as_text=True)

    def test_toggle_and_submit(self, app, login):
        report_id = build(app, make_assigned_report)
        assignment_id = self._assignment_id(app, report_id)
        client = login('staff1')

        client.post(f'/assignments/{assignment_id}/todo', data={'item': 'Periksa kelengkapan berkas'})
        assert fetch(app, TaskAssignment, assignment_id).progress == 100

        response = client.post(f'/assignments/{assignment_id}/submit')
        assert response.status_code == 302
        assert fetch(app, TaskAssignment, assignment_id).status == 'completed'

    def test_submit_incomplete(self, app, login):
        report_id = build(app, make_assigned_report)
        assignment_id = self._assignment_id(app, report_id)

        response = login('staff1').post(f'/assignments/{assignment_id}/submit', follow_redirects=True)
        assert 'Selesaikan semua item tugas' in response.get_data(as_text=True)
        assert fetch(app, TaskAssignment, assignment_id).status == 'in-progress'

    def test_other_staff_cannot_toggle(self, app, login):
        report_id = build(app, make_assigned_report)
        assignment_id = self._assignment_id(app, report_id)

        response = login('staff2').post(f'/assignments/{assignment_id}/todo',
                                        data={'item': 'Periksa kelengkapan berkas'}, follow_redirects=True)
        assert 'bukan milik Anda' in response.get_data(as_text=True)
        assert fetch(app, TaskAssignment, assignment_id).completed_tasks == []


class TestAttachments:

    def _upload(self, client, report_id, name='surat.pdf', content=b'%PDF-1.4 isi'):
        return client.post(f'/reports/{report_id}/attachments',
                           data={'file': (BytesIO(content), name)},
                           content_type='multipart/form-data')

    def test_upload_and_download(self, app, login):
        report_id = build(app, make_assigned_report)
        client = login('tu')

        assert self._upload(client, report_id).status_code == 302
        with app.app_context():
            attachment = FileAttachment.query.filter_by(report_id=report_id).one()
            attachment_id = attachment.id
            assert attachment.file_name == 'surat.pdf'
            assert attachment.mime_type == 'application/pdf'
            assert attachment.uploader.name == 'tu'

        response = client.get(f'/attachments/{attachment_id}')
        assert response.status_code == 200
        assert response.data == b'%PDF-1.4 isi'
        assert 'attachment' in response.headers['Content-Disposition']

        inline = client.get(f'/attachments/{attachment_id}?view=1')
        assert 'attachment' not in inline.headers.get('Content-Disposition', '')

        assert login('staff1').get(f'/attachments/{attachment_id}').status_code == 200
        assert login('staff2').get(f'/attachments/{attachment_id}').status_code == 403

    def test_rejects_unknown_extension(self, app, login):
        report_id = build(app, make_report)
        response = self._upload(login('tu'), report_id, name='skrip.exe')
        assert response.status_code == 302
        with app.app_context():
            assert FileAttachment.query.count() == 0

    def test_delete_report_removes_files(self, app, login):
        report_id = build(app, make_report)
        client = login('tu')
        self._upload(client, report_id)
        with app.app_context():
            stored = FileAttachment.query.one().stored_name

        client.post(f'/reports/{report_id}/delete')
        assert not os.path.exists(os.path.join(app.config['UPLOAD_FOLDER'], stored))

    def test_failed_commit_removes_saved_file(self, app, profiles, monkeypatch):
        report = make_report(profiles)

        def failing_commit():
            raise SQLAlchemyError('disk penuh')

        monkeypatch.setattr(db.session(), 'commit', failing_commit)
        upload = FileStorage(stream=BytesIO(b'%PDF-1.4 isi'), filename='surat.pdf')

        with pytest.raises(SQLAlchemyError):
            save_upload(profiles['tu'], report, upload)
        assert os.listdir(app.config['UPLOAD_FOLDER']) == []
        assert FileAttachment.query.count() == 0


class TestExport:

    def test_export_excel(self, app, login):
        build(app, make_report, no_surat='EX/001', hal='Legalisir ijazah', layanan='Legalisir Dokumen')
        build(app, make_assigned_report, no_surat='EX/002')

        response = login('tu').get('/reports/export')
        assert response.status_code == 200
        assert 'laporan_surat_' in response.headers['Content-Disposition']

        df = pd.read_excel(BytesIO(response.data), sheet_name='Laporan Surat')
        assert set(df['No Surat']) == {'EX/001', 'EX/002'}
        row = df[df['No Surat'] == 'EX/002'].iloc[0]
        assert row['Status'] == 'Dalam Proses'
        assert row['Pemegang Saat Ini'] == 'Budi Santoso'
        assert row['Jumlah Staff'] == 1

    def test_export_respects_filters(self, app, login):
        build(app, make_report, no_surat='EX/001', layanan='Legalisir Dokumen')
        build(app, make_report, no_surat='EX/002', layanan='Layanan Umum')

        response = login('admin').get('/reports/export?layanan=Layanan+Umum')
        df = pd.read_excel(BytesIO(response.data), sheet_name='Laporan Surat')
        assert list(df['No Surat']) == ['EX/002']

    def test_staff_cannot_export(self, login):
        assert login('staff1').get('/reports/export').status_code == 302
