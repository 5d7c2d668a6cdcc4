"""Score loading: container handling for bare and compressed MusicXML."""

import io
import logging
import zipfile
import zlib
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Tuple, Union

from ..core import ContainerFormat, FormatError

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"


class ScoreLoader:
    """Reads score files and unwraps them to a MusicXML document."""

    SUPPORTED_FORMATS = {".xml", ".musicxml", ".mxl"}

    def load(self, path: Union[str, Path]) -> bytes:
        """
        Read a score file from disk.

        Args:
            path: Path to a .xml, .musicxml or .mxl file

        Returns:
            Raw file bytes

        Raises:
            ValueError: If file format not supported
            FileNotFoundError: If file doesn't exist
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Score file not found: {path}")

        if path.suffix.lower() not in self.SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {path.suffix}. "
                f"Supported: {self.SUPPORTED_FORMATS}"
            )

        return path.read_bytes()

    def read_document(self, raw: bytes) -> Tuple[ET.Element, ContainerFormat]:
        """
        Unwrap raw bytes to the root element of the score document.

        Args:
            raw: Bare MusicXML or a zip (.mxl) container

        Returns:
            Tuple of (document root element, container format)

        Raises:
            FormatError: If the container or document cannot be read
        """
        if zipfile.is_zipfile(io.BytesIO(raw)):
            return self._parse_xml(self._extract_root_file(raw)), ContainerFormat.MXL
        return self._parse_xml(raw), ContainerFormat.XML

    def _extract_root_file(self, raw: bytes) -> bytes:
        try:
            archive = zipfile.ZipFile(io.BytesIO(raw))
        except (zipfile.BadZipFile, OSError) as e:
            raise FormatError(f"cannot decompress score container: {e}") from e

        with archive:
            names = archive.namelist()
            target = None

            if CONTAINER_PATH in names:
                container = self._parse_xml(self._read_entry(archive, CONTAINER_PATH))
                rootfile = container.find(".//{*}rootfile")
                if rootfile is not None and rootfile.get("full-path") in names:
                    target = rootfile.get("full-path")
                else:
                    logger.warning("container.xml has no usable rootfile, searching entries")

            if target is None:
                candidates = [
                    name for name in names
                    if name.lower().endswith((".xml", ".musicxml"))
                    and not name.startswith("META-INF/")
                ]
                if not candidates:
                    raise FormatError("no score document found in container")
                target = candidates[0]

            logger.debug("Reading score document %s from container", target)
            return self._read_entry(archive, target)

    @staticmethod
    def _read_entry(archive: zipfile.ZipFile, name: str) -> bytes:
        try:
            return archive.read(name)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, OSError) as e:
            raise FormatError(f"cannot decompress {name}: {e}") from e

    @staticmethod
    def _parse_xml(data: bytes) -> ET.Element:
        try:
            return ET.fromstring(data)
        except ET.ParseError as e:
            raise FormatError(f"malformed XML: {e}") from e
