import logging
import mimetypes
import os
import secrets

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from sitrack import db
from sitrack.models import FileAttachment
from sitrack.workflow import COMPLETED, WorkflowError

logger = logging.getLogger(__name__)


def allowed_file(filename):
    ext = os.path.splitext(filename)[1].lower().lstrip('.')
    return ext in current_app.config['ALLOWED_EXTENSIONS']


def detect_mime_type(filename):
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or 'application/octet-stream'


def attachment_path(attachment):
    return os.path.join(current_app.config['UPLOAD_FOLDER'], attachment.stored_name)


def save_upload(actor, report, file):
    if actor is None or actor.role not in ('TU', 'Koordinator'):
        raise WorkflowError('Anda tidak memiliki akses untuk mengunggah lampiran.', status_code=403)
    if report.status == COMPLETED:
        raise WorkflowError('Laporan yang sudah selesai tidak dapat ditambah lampiran.', status_code=409)
    if file is None or file.filename == '':
        raise WorkflowError('Pilih file yang akan diunggah.')

    filename = secure_filename(file.filename)
    if not filename or not allowed_file(filename):
        raise WorkflowError('Tipe file tidak diizinkan.')

    # Nama file di disk diberi prefix acak agar tidak saling menimpa
    stored_name = f'{report.id}_{secrets.token_hex(8)}_{filename}'
    file_path = os.path.join(current_app.config['UPLOAD_FOLDER'], stored_name)
    file.save(file_path)

    attachment = FileAttachment(
        report=report,
        file_name=filename,
        stored_name=stored_name,
        mime_type=detect_mime_type(filename),
        uploaded_by=actor.id,
    )
    db.session.add(attachment)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        os.remove(file_path)
        logger.exception("Database error while saving attachment %s", filename)
        raise
    logger.info("Attachment %s uploaded to report %s", filename, report.no_surat)
    return attachment


def remove_files(stored_names):
    for stored_name in stored_names:
        file_path = os.path.join(current_app.config['UPLOAD_FOLDER'], stored_name)
        if os.path.exists(file_path):
            os.remove(file_path)
            logger.info("Deleted attachment file %s", file_path)
        else:
            logger.warning("Attachment file not found for deletion: %s", file_path)
