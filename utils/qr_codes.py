"""QR code files for inventory items.

Each item gets a PNG under ``<UPLOAD_DIR>/qr`` that encodes the frontend URL
of the item's detail page. Paths returned and accepted here are the public
ones (``/uploads/qr/<file>``) stored on the item row.

Copyright (c) Bryn Gwalad 2025
"""

import logging
from pathlib import Path
from typing import Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_H

logger = logging.getLogger("custom_tables.qr")


class QRCodeGenerator:
    def __init__(self, upload_dir, frontend_url: str):
        self.qr_dir = Path(upload_dir) / "qr"
        self.frontend_url = frontend_url.rstrip("/")

    def generate(self, entity: str, item_id: int, scope: Optional[str] = None) -> str:
        """Write the QR code for ``entity`` item ``item_id`` and return its public path.

        ``scope`` replaces ``entity`` in the file name when two owners can use
        the same entity name.
        """
        self.qr_dir.mkdir(parents=True, exist_ok=True)
        item_url = f"{self.frontend_url}/{entity}/details/{item_id}"
        filename = f"qr-{scope or entity}-{item_id}.png"

        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
        qr.add_data(item_url)
        qr.make(fit=True)
        image = qr.make_image(fill_color="black", back_color="white")
        image.save(str(self.qr_dir / filename))

        logger.debug("Generated QR code %s for %s", filename, item_url)
        return f"/uploads/qr/{filename}"

    def delete(self, qr_code_path: Optional[str]) -> None:
        """Remove a QR code file. Failures are logged, never raised."""
        if not qr_code_path:
            return
        file_path = self.qr_dir / Path(qr_code_path).name
        try:
            file_path.unlink()
        except OSError as exc:
            logger.warning("Failed to delete QR code at %s: %s", qr_code_path, exc)

    def regenerate(self, entity: str, item_id: int, old_path: Optional[str], scope: Optional[str] = None) -> str:
        self.delete(old_path)
        return self.generate(entity, item_id, scope=scope)
