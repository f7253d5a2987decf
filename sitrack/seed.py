import logging
import random

import click
from flask.cli import with_appcontext

from sitrack import db
from sitrack.models import Profile
from sitrack.options import SERVICES
from sitrack import workflow

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ('admin', 'Administrator', 'Admin'),
    ('tu1', 'Siti Rahmawati', 'TU'),
    ('koordinator1', 'Budi Santoso', 'Koordinator'),
    ('staff1', 'Andi Pratama', 'Staff'),
    ('staff2', 'Dewi Lestari', 'Staff'),
]

HAL_OPTIONS = [
    "Permohonan data curah hujan tahun 2024",
    "Permohonan rekomendasi izin usaha",
    "Legalisir ijazah dan transkrip",
    "Konsultasi teknis pembangunan jembatan desa",
    "Pengaduan kerusakan jalan kabupaten",
    "Permohonan audiensi",
]


def seed_users(password):
    profiles = {}
    for name, full_name, role in DEMO_USERS:
        profile = Profile.query.filter_by(name=name).first()
        if profile is None:
            profile = Profile(name=name, full_name=full_name, role=role)
            profile.set_password(password)
            db.session.add(profile)
        profiles[name] = profile
    db.session.commit()
    return profiles


def seed_reports(count, profiles, rng=None):
    """Buat laporan contoh; sebagian diteruskan ke koordinator."""
    rng = rng or random.Random()
    tu = profiles['tu1']
    coordinator = profiles['koordinator1']

    created = []
    for index in range(count):
        no_surat = f'DEMO/{index + 1:04d}/{rng.randint(100, 999)}'
        try:
            report = workflow.register_report(tu, no_surat, rng.choice(HAL_OPTIONS), rng.choice(SERVICES))
        except workflow.WorkflowError as e:
            logger.warning("Skipping demo report %s: %s", no_surat, e.message)
            continue
        if rng.random() < 0.5:
            workflow.forward_to_coordinator(tu, report, coordinator)
        created.append(report)
    return created


@click.command('seed-demo')
@click.option('--reports', 'report_count', default=20, show_default=True, help='Jumlah laporan contoh.')
@click.option('--password', default='sitrack123', show_default=True, help='Password untuk semua akun demo.')
@with_appcontext
def seed_command(report_count, password):
    """Isi database dengan akun dan laporan contoh."""
    db.create_all()
    profiles = seed_users(password)
    reports = seed_reports(report_count, profiles)
    logger.info("Seeded %d demo users and %d reports", len(profiles), len(reports))
    click.echo(f'{len(profiles)} akun dan {len(reports)} laporan contoh berhasil ditambahkan!')
