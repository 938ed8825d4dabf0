"""
Office → PDF conversion through a headless LibreOffice process.

Provides:
- DocumentConverter: narrow interface the publishing pipeline depends on
- LibreOfficeConverter: runs ``libreoffice --headless --convert-to pdf``
  with a bounded wait
- check_libreoffice_available: binary lookup used by the health endpoint
"""
from __future__ import annotations

import abc
import asyncio
import logging
import shutil
from pathlib import Path
from typing import List, Optional

from app.config import settings

logger = logging.getLogger(__name__)


class ConversionError(RuntimeError):
    """Conversion process failed, timed out, or produced no output."""


class DocumentConverter(abc.ABC):
    """Converts one office document into ``<out_dir>/<stem>.pdf``."""

    @abc.abstractmethod
    async def convert(self, source: Path, out_dir: Path) -> Path:
        """
        Convert *source* to PDF inside *out_dir* and return the PDF path.

        Re-running overwrites a previous output of the same name.

        Raises:
            ConversionError: on any failure.
        """


def expected_pdf_path(source: Path, out_dir: Path) -> Path:
    return Path(out_dir) / f"{Path(source).stem}.pdf"


class LibreOfficeConverter(DocumentConverter):
    """Runs LibreOffice in headless mode as an external process."""

    def __init__(self, command: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.command = command or settings.LIBREOFFICE_CMD
        self.timeout = float(timeout if timeout is not None else settings.CONVERSION_TIMEOUT)

    def build_command(self, source: Path, out_dir: Path) -> List[str]:
        return [
            self.command,
            "--headless",
            "--convert-to",
            "pdf",
            str(Path(source).resolve()),
            "--outdir",
            str(Path(out_dir).resolve()),
        ]

    async def convert(self, source: Path, out_dir: Path) -> Path:
        source = Path(source)
        out_dir = Path(out_dir)
        if not source.is_file():
            raise ConversionError(f"Source file does not exist: {source.resolve()}")
        out_dir.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(source, out_dir)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ConversionError(f"Cannot start converter {self.command!r}: {exc}") from exc

        try:
            _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error(
                "LibreOffice conversion of %s timed out after %.0fs", source.name, self.timeout
            )
            raise ConversionError(f"Conversion of {source.name} timed out after {self.timeout:.0f}s")

        pdf_path = expected_pdf_path(source, out_dir)
        if process.returncode == 0 and pdf_path.is_file():
            logger.info("Converted %s to PDF", source.name)
            return pdf_path

        errors = stderr.decode("utf-8", errors="replace").strip()
        logger.error(
            "LibreOffice conversion failed for %s. Exit code: %s. Errors: %s",
            source.name,
            process.returncode,
            errors or "<none>",
        )
        if process.returncode == 0:
            raise ConversionError(f"Converter produced no PDF for {source.name}")
        raise ConversionError(f"Converter exited with code {process.returncode} for {source.name}")


def check_libreoffice_available(command: Optional[str] = None) -> bool:
    return shutil.which(command or settings.LIBREOFFICE_CMD) is not None
