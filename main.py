"""
main.py — Entry point for PDF Page Editor
Opens PDFs given on the command line in the preview window.
"""

import logging
import os
import sys

# High-DPI support
os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")

from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import QApplication

from main_window import MainWindow


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = QApplication(sys.argv)
    app.setApplicationName("PDF Page Editor")
    app.setOrganizationName("PDFPageEditor")
    app.setStyle("Fusion")
    app.setFont(QFont("Segoe UI", 10))

    app.setStyleSheet("""
        QMainWindow { background: #f0f0f0; }
        QScrollArea#pdfScrollArea { border: none; background: #444; }
        QStatusBar { background: #fafafa; border-top: 1px solid #e0e0e0; }
    """)

    window = MainWindow()

    for arg in sys.argv[1:]:
        if arg.lower().endswith(".pdf") and os.path.exists(arg):
            window.load_file(arg)
            break

    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
