ROLES = ["Admin", "TU", "Koordinator", "Staff"]

SERVICES = [
    "Permohonan Data",
    "Rekomendasi Perizinan",
    "Legalisir Dokumen",
    "Konsultasi Teknis",
    "Pengaduan Masyarakat",
    "Layanan Umum",
]

# Dokumen yang harus diverifikasi koordinator sebelum staff dapat ditugaskan
DOCUMENT_REQUIREMENTS = {
    "Permohonan Data": [
        "Surat Permohonan",
        "KTP Pemohon",
        "Proposal Penelitian",
    ],
    "Rekomendasi Perizinan": [
        "Surat Permohonan",
        "KTP Pemohon",
        "Akta Pendirian",
        "NIB",
    ],
    "Legalisir Dokumen": [
        "Surat Permohonan",
        "Dokumen Asli",
        "Fotokopi Dokumen",
    ],
    "Konsultasi Teknis": [
        "Surat Permohonan",
    ],
    "Pengaduan Masyarakat": [
        "Surat Pengaduan",
        "KTP Pelapor",
    ],
}

TODO_ITEMS = [
    "Periksa kelengkapan berkas",
    "Verifikasi data pemohon",
    "Koordinasi dengan unit terkait",
    "Survei lapangan",
    "Susun draft surat balasan",
    "Paraf dan penomoran surat",
    "Arsipkan dokumen",
]

DOCUMENT_PRESENT = "Ada"
DOCUMENT_MISSING = "Tidak Ada"
