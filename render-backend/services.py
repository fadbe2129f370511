"""
Service classes for the Storyboard Render Backend.
Contains BundleIngestor, SegmentSynthesizer and TimelineConcatenator.
"""

import io
import json
import logging
import os
import zipfile
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Union

from pydantic import ValidationError

from config import (
    CONCAT_LIST_NAME,
    FALLBACK_AUDIO_DURATION,
    FINAL_VIDEO_NAME,
    IMAGES_PREFIX,
    METADATA_FILE,
    SCENE_FILE_PREFIX,
    STORYBOARD_FILE,
    SYNTHESIS_PROGRESS_WINDOW,
    VOICEOVERS_PREFIX,
)
from errors import InvalidBundleError, ProbeError
from schemas import ProjectMetadata, SceneEntry


@dataclass
class Bundle:
    """What the ingestor extracted from a project archive."""
    metadata: ProjectMetadata
    scenes: List[SceneEntry]
    image_files: List[str] = field(default_factory=list)  # archive order
    voiceover_files: List[str] = field(default_factory=list)


@dataclass
class SynthesisResult:
    segments: List[str] = field(default_factory=list)
    skipped_scenes: int = 0


class BundleIngestor:
    """Validates a project archive and unpacks its media into a job workspace."""

    def __init__(self, workspace: str):
        self.workspace = workspace

    def _read_json(self, archive: zipfile.ZipFile, name: str) -> Any:
        try:
            raw = archive.read(name)
        except KeyError:
            raise InvalidBundleError(f"Invalid project ZIP: missing {name}")
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidBundleError(f"Invalid project ZIP: {name} is not valid JSON ({e})")

    def parse_manifests(self, archive: zipfile.ZipFile) -> Tuple[ProjectMetadata, List[SceneEntry]]:
        metadata_raw = self._read_json(archive, METADATA_FILE)
        storyboard_raw = self._read_json(archive, STORYBOARD_FILE)

        if not isinstance(metadata_raw, dict):
            raise InvalidBundleError(f"Invalid project ZIP: {METADATA_FILE} must be a JSON object")
        if not isinstance(storyboard_raw, list):
            raise InvalidBundleError(f"Invalid project ZIP: {STORYBOARD_FILE} must be a JSON array of scenes")

        try:
            metadata = ProjectMetadata.model_validate(metadata_raw)
            scenes = [SceneEntry.model_validate(entry) for entry in storyboard_raw]
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise InvalidBundleError(
                f"Invalid project ZIP: bad scene entry in {STORYBOARD_FILE} ({location}: {first.get('msg')})"
            )
        return metadata, scenes

    def _extract_prefix(self, archive: zipfile.ZipFile, prefix: str) -> List[str]:
        """
        Write every scene-* entry under `prefix` into the workspace, keeping only its base filename.
        When two entries share a base filename the first one wins.
        """
        extracted = []
        for info in archive.infolist():
            if info.is_dir() or not info.filename.startswith(prefix):
                continue
            filename = os.path.basename(info.filename)
            if not filename.startswith(SCENE_FILE_PREFIX):
                logging.info(f"Ignoring {info.filename}: not a scene file")
                continue
            if filename in extracted:
                logging.warning(f"⚠️ Ignoring {info.filename}: {filename} was already extracted")
                continue
            with archive.open(info) as src, open(os.path.join(self.workspace, filename), "wb") as dst:
                while True:
                    chunk = src.read(1024 * 1024)
                    if not chunk:
                        break
                    dst.write(chunk)
            extracted.append(filename)
        return extracted

    def open(self, source: Union[str, bytes]) -> zipfile.ZipFile:
        """`source` is the path of the spooled archive, or its bytes."""
        if isinstance(source, bytes):
            source = io.BytesIO(source)
        try:
            return zipfile.ZipFile(source)
        except zipfile.BadZipFile as e:
            raise InvalidBundleError(f"Invalid project ZIP: {e}")

    def run(
        self,
        source: Union[str, bytes],
        on_stage: Optional[Callable[[str], None]] = None,
    ) -> Bundle:
        """
        Parses both manifests, then extracts images and voiceovers.
        `on_stage` is called with "manifests", "images" and "voiceovers" as each step completes.
        """
        notify = on_stage or (lambda stage: None)

        with self.open(source) as archive:
            metadata, scenes = self.parse_manifests(archive)
            logging.info(f"📋 Project: {metadata.title or 'untitled'} ({len(scenes)} scenes)")
            notify("manifests")

            image_files = self._extract_prefix(archive, IMAGES_PREFIX)
            logging.info(f"🖼️ Extracted {len(image_files)} images")
            notify("images")

            voiceover_files = self._extract_prefix(archive, VOICEOVERS_PREFIX)
            logging.info(f"🎤 Extracted {len(voiceover_files)} voiceovers")
            notify("voiceovers")

        return Bundle(
            metadata=metadata,
            scenes=scenes,
            image_files=image_files,
            voiceover_files=voiceover_files,
        )


class SegmentSynthesizer:
    """Turns every scene into one short clip per image, in storyboard order."""

    def __init__(
        self,
        workspace: str,
        encoder,
        progress_callback: Optional[Callable[[int], None]] = None,
        progress_window: Tuple[int, int] = SYNTHESIS_PROGRESS_WINDOW,
        fallback_duration: float = FALLBACK_AUDIO_DURATION,
    ):
        self.workspace = workspace
        self.encoder = encoder
        self.progress_callback = progress_callback
        self.progress_window = progress_window
        self.fallback_duration = fallback_duration

    @staticmethod
    def audio_filename(scene_id) -> str:
        return f"scene-{scene_id}.wav"

    @staticmethod
    def find_scene_images(scene_id, image_files: List[str]) -> List[str]:
        """Images named scene-<id>_<n>.<ext> or scene-<id>.<ext>, in the given order."""
        tokens = (f"scene-{scene_id}_", f"scene-{scene_id}.")
        return [name for name in image_files if any(token in name for token in tokens)]

    @staticmethod
    def split_duration(audio_duration: float, image_count: int) -> float:
        """Every image of a scene gets the same share of its voiceover."""
        if image_count <= 0:
            raise ValueError("image_count must be positive")
        return audio_duration / image_count

    def progress_for(self, scenes_done: int, total_scenes: int) -> int:
        start, end = self.progress_window
        if total_scenes <= 0:
            return end
        return start + int(scenes_done / total_scenes * (end - start))

    def probe_audio(self, audio_path: str) -> float:
        try:
            return self.encoder.probe_duration(audio_path)
        except ProbeError as e:
            logging.warning(f"⚠️ {e}; using {self.fallback_duration}s")
            return self.fallback_duration

    def _report(self, scenes_done: int, total_scenes: int) -> None:
        if self.progress_callback:
            self.progress_callback(self.progress_for(scenes_done, total_scenes))

    def run(self, scenes: List[SceneEntry], image_files: List[str]) -> SynthesisResult:
        result = SynthesisResult()
        total = len(scenes)

        for index, scene in enumerate(scenes):
            scene_id = scene.scene_id
            audio_path = os.path.join(self.workspace, self.audio_filename(scene_id))
            images = self.find_scene_images(scene_id, image_files)

            if not os.path.exists(audio_path):
                logging.warning(f"⚠️ Scene {scene_id}: {self.audio_filename(scene_id)} not found, skipping")
                result.skipped_scenes += 1
            elif not images:
                logging.warning(f"⚠️ Scene {scene_id}: no images found, skipping")
                result.skipped_scenes += 1
            else:
                duration = self.probe_audio(audio_path)
                per_image = self.split_duration(duration, len(images))
                logging.info(
                    f"🎞️ Scene {scene_id}: {len(images)} image(s), {duration:.2f}s audio, {per_image:.2f}s each"
                )
                for image_index, image_name in enumerate(images):
                    segment_path = os.path.join(self.workspace, f"segment-{scene_id}-{image_index}.mp4")
                    self.encoder.render_segment(
                        os.path.join(self.workspace, image_name),
                        audio_path,
                        per_image,
                        segment_path,
                    )
                    result.segments.append(segment_path)

            self._report(index + 1, total)

        return result


class TimelineConcatenator:
    """Joins the segments, in order, into the final video without re-encoding."""

    def __init__(self, workspace: str, encoder):
        self.workspace = workspace
        self.encoder = encoder

    @staticmethod
    def concat_line(path: str) -> str:
        # The concat demuxer reads single-quoted paths; a quote is written as '\''
        return "file '{}'".format(path.replace("'", "'\\''"))

    def write_concat_list(self, segments: List[str]) -> str:
        list_path = os.path.join(self.workspace, CONCAT_LIST_NAME)
        with open(list_path, "w", encoding="utf-8") as f:
            f.write("\n".join(self.concat_line(path) for path in segments))
            f.write("\n")
        return list_path

    def run(self, segments: List[str]) -> str:
        if not segments:
            raise InvalidBundleError("No usable scenes: every scene is missing its audio or images")

        list_path = self.write_concat_list(segments)
        logging.info(f"📝 Created concat list with {len(segments)} segments")

        output_path = os.path.join(self.workspace, FINAL_VIDEO_NAME)
        self.encoder.concat(list_path, output_path)
        return output_path

