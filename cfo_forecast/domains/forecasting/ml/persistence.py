"""
Model Persistence
Saving, loading, deleting, exporting and importing trained model bundles

A bundle is one directory per model name:
    <root>/<name>/model.keras       topology + weights + optimizer state
    <root>/<name>/metadata.json     ModelMetadata

A bundle is written to a staging directory first and swapped into place,
so a reader never sees weights without matching metadata and a failed
save leaves the previous bundle intact.

Exports use three plain files that import_from_files() reads back:
    model.json, model.weights.h5, <name>-metadata.json
"""

import io
import os
import re
import json
import uuid
import shutil
import logging
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import tensorflow as tf

from cfo_forecast.domains.forecasting.ml.metadata import ModelMetadata, replacement_metadata
from cfo_forecast.domains.forecasting.ml.models import compile_model, model_lookback
from cfo_forecast.shared.exceptions import (
    ForecastException,
    ForecastWindowError,
    ImportValidationError,
    InvalidParameterError,
    MissingMetadataError
)

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

MODEL_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]{0,99}$')


@dataclass
class ModelHandle:
    """A loaded model together with the metadata needed to use it."""

    model: Any
    metadata: ModelMetadata

    @property
    def name(self) -> Optional[str]:
        return self.metadata.name


def validate_model_name(name: str) -> str:
    if not name or not MODEL_NAME_PATTERN.match(name):
        raise InvalidParameterError('model_name', name,
                                    'Use letters, digits, dot, dash or underscore (max 100)')
    return name


def classify_upload(filenames: List[str]) -> Dict[str, Optional[str]]:
    """
    Split an uploaded file set the way the dashboard import did:
    *metadata*.json -> metadata, other .json -> topology, .bin/.h5 -> weights.
    """
    result = {'topology': None, 'weights': None, 'metadata': None}
    for filename in filenames:
        lower = filename.lower()
        if 'metadata' in lower and lower.endswith('.json'):
            result['metadata'] = filename
        elif lower.endswith('.json'):
            result['topology'] = filename
        elif lower.endswith('.bin') or lower.endswith('.h5'):
            result['weights'] = filename
    return result


class ModelStore:
    """Local persistent store for model bundles."""

    MODEL_FILE = 'model.keras'
    METADATA_FILE = 'metadata.json'
    TOPOLOGY_FILE = 'model.json'
    WEIGHTS_FILE = 'model.weights.h5'

    def __init__(self, root_dir: PathLike):
        self.root = Path(root_dir)
        self._lock = threading.Lock()

    def _bundle_dir(self, name: str) -> Path:
        return self.root / validate_model_name(name)

    def exists(self, name: str) -> bool:
        bundle = self._bundle_dir(name)
        with self._lock:
            return (bundle / self.MODEL_FILE).is_file() and (bundle / self.METADATA_FILE).is_file()

    def save(self, model, metadata: ModelMetadata, name: str) -> Path:
        """
        Persist model + metadata under `name`, replacing any previous bundle.

        Returns:
            Path of the bundle directory
        """
        target = self._bundle_dir(name)
        self.root.mkdir(parents=True, exist_ok=True)
        metadata.name = name

        staging = Path(tempfile.mkdtemp(prefix=f'.{name}-staging-', dir=self.root))
        try:
            model.save(str(staging / self.MODEL_FILE))
            with open(staging / self.METADATA_FILE, 'w', encoding='utf-8') as f:
                json.dump(metadata.to_dict(), f, indent=2)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        backup = None
        with self._lock:
            if target.exists():
                backup = self.root / f'.{name}-old-{uuid.uuid4().hex[:8]}'
                os.replace(target, backup)
            try:
                os.replace(staging, target)
            except OSError:
                if backup is not None:
                    os.replace(backup, target)
                    backup = None
                shutil.rmtree(staging, ignore_errors=True)
                raise

        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)

        logger.info(f"💾 Saved model '{name}' to {target}")
        return target

    def load(self, name: str) -> Optional[ModelHandle]:
        """
        Load a bundle. Returns None when nothing has been trained yet
        (an expected first-run state) or when the bundle is incomplete.
        """
        bundle = self._bundle_dir(name)
        model_path = bundle / self.MODEL_FILE
        metadata_path = bundle / self.METADATA_FILE

        # Both files are read under the swap lock so a concurrent save
        # cannot pair old metadata with new weights.
        with self._lock:
            if not bundle.is_dir():
                logger.info(f"No stored model '{name}'")
                return None

            if not model_path.is_file() or not metadata_path.is_file():
                logger.warning(f"Incomplete bundle for '{name}' (model: {model_path.is_file()}, "
                               f"metadata: {metadata_path.is_file()}) - treated as not found")
                return None

            with open(metadata_path, 'r', encoding='utf-8') as f:
                metadata = ModelMetadata.from_dict(json.load(f))
            model = tf.keras.models.load_model(str(model_path))
        metadata.name = name

        lookback = model_lookback(model)
        if metadata.lookback and metadata.lookback != lookback:
            raise ForecastWindowError(expected=metadata.lookback, actual=lookback,
                                      details={'model_name': name})

        logger.info(f"✅ Loaded model '{name}' ({metadata.target_category}, lookback={metadata.lookback})")
        return ModelHandle(model=model, metadata=metadata)

    def delete(self, name: str) -> bool:
        """Remove the whole bundle. Returns False if there was none."""
        bundle = self._bundle_dir(name)
        with self._lock:
            if not bundle.exists():
                return False
            shutil.rmtree(bundle)
        logger.info(f"🗑️ Deleted model '{name}'")
        return True

    def list_models(self) -> List[Dict[str, Any]]:
        """Metadata summaries of every complete bundle."""
        if not self.root.is_dir():
            return []

        models = []
        with self._lock:
            for entry in sorted(self.root.iterdir()):
                if entry.name.startswith('.') or not entry.is_dir():
                    continue
                metadata_path = entry / self.METADATA_FILE
                if not metadata_path.is_file() or not (entry / self.MODEL_FILE).is_file():
                    continue
                try:
                    with open(metadata_path, 'r', encoding='utf-8') as f:
                        metadata = ModelMetadata.from_dict(json.load(f))
                except (OSError, ValueError, ForecastException) as e:
                    logger.warning(f"Skipping unreadable metadata in {entry}: {e}")
                    continue
                metadata.name = entry.name
                models.append(metadata.summary())
        return models

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_files(self, handle: ModelHandle, dest_dir: PathLike) -> Dict[str, Path]:
        """Write topology JSON, weights and metadata JSON into dest_dir."""
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        name = handle.metadata.name or 'model'

        paths = {
            'topology': dest / self.TOPOLOGY_FILE,
            'weights': dest / self.WEIGHTS_FILE,
            'metadata': dest / f'{name}-metadata.json',
        }

        with open(paths['topology'], 'w', encoding='utf-8') as f:
            f.write(handle.model.to_json())
        handle.model.save_weights(str(paths['weights']))
        with open(paths['metadata'], 'w', encoding='utf-8') as f:
            json.dump(handle.metadata.to_dict(), f, indent=2)

        logger.info(f"📦 Exported model '{name}' to {dest}")
        return paths

    def export_archive(self, handle: ModelHandle) -> bytes:
        """Zip of the three export files, for download."""
        with tempfile.TemporaryDirectory() as temp_dir:
            paths = self.export_files(handle, temp_dir)
            buffer = io.BytesIO()
            with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zf:
                for path in paths.values():
                    zf.write(path, arcname=path.name)
        return buffer.getvalue()

    def import_from_files(self, topology: Optional[PathLike], weights: Optional[PathLike],
                          metadata: Optional[PathLike] = None,
                          replacement: Optional[Dict[str, Any]] = None,
                          name: Optional[str] = None) -> ModelHandle:
        """
        Rebuild a model from exported files.

        Args:
            topology: model.json path
            weights: weights file path
            metadata: metadata JSON path (optional)
            replacement: user-supplied targetCategory/lookback/min/max, used
                         when the metadata file is absent or lacks bounds
            name: model name for the resulting handle

        Raises:
            ImportValidationError: topology/weights missing, unreadable or
                                   inconsistent with the metadata lookback
            MissingMetadataError: no usable metadata and no replacement
        """
        missing = [label for label, path in (('topology', topology), ('weights', weights))
                   if not path or not Path(path).is_file()]
        if missing:
            raise ImportValidationError(f"Missing {' and '.join(missing)} file", missing=missing)

        try:
            topology_json = Path(topology).read_text(encoding='utf-8')
            json.loads(topology_json)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise ImportValidationError('Topology file is not valid JSON', original_exception=e)

        try:
            model = tf.keras.models.model_from_json(topology_json)
        except Exception as e:
            raise ImportValidationError(f'Topology could not be built: {e}', original_exception=e)

        with tempfile.TemporaryDirectory() as temp_dir:
            # Keras only reads weights from a *.weights.h5 filename
            weights_copy = Path(temp_dir) / self.WEIGHTS_FILE
            shutil.copyfile(weights, weights_copy)
            try:
                model.load_weights(str(weights_copy))
            except Exception as e:
                raise ImportValidationError(f'Weights do not match topology: {e}', original_exception=e)

        model_meta = None
        if metadata:
            try:
                with open(metadata, 'r', encoding='utf-8') as f:
                    model_meta = ModelMetadata.from_dict(json.load(f))
            except (OSError, ValueError) as e:
                raise ImportValidationError('Metadata file is not valid JSON', original_exception=e)

        if model_meta is None or model_meta.missing_fields():
            if not replacement:
                missing_fields = model_meta.missing_fields() if model_meta else ['metadata']
                raise MissingMetadataError(name or 'imported', missing_fields)
            logger.warning("Imported model uses hand-entered bounds - forecasts are unverified")
            model_meta = replacement_metadata(replacement, name=name)

        if name:
            model_meta.name = name

        lookback = model_lookback(model)
        if model_meta.lookback != lookback:
            raise ImportValidationError(
                f"Metadata lookback {model_meta.lookback} does not match model input width {lookback}")

        compile_model(model, model_meta.hyperparameters.learning_rate)

        logger.info(f"✅ Imported model for '{model_meta.target_category}' (lookback={lookback})")
        return ModelHandle(model=model, metadata=model_meta)
