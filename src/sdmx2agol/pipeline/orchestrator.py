"""
Pipeline Orchestrator - one request from SDMX input to published feature service

Stages run in order: validate, fetch, parse, build, join, upload, publish,
enrich, cleanup. A PipelineError raised inside a stage is stamped with that
stage and ends the run; the caller always receives a PipelineResult.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar, Union

from pydantic import ValidationError as ModelValidationError

from ..cleanup import cleanup_input_files
from ..config.settings import Config, ConfigurationError, PublishConfig, RemoteConfig
from ..domain.enums import PipelineStage, SourceFormat
from ..domain.models import PublishRequest
from ..types import JoinStats, PipelineError, PipelineResult, ValidationError
from ..utils import format_duration
from .export import collection_extent
from .join import GeometryJoiner, unique_join_values, validate_join_fields
from .parse import RawInput, load_input_file, parse
from .publish import ItemPublisher
from .source import GeometrySource, SdmxSource, load_geometry_file
from .transform import FeatureBuilder

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _model_error_message(error: ModelValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "Invalid request: " + "; ".join(parts)


class SdmxPipeline:
    """
    Run conversion/publish requests.

    Collaborators are created from `config` on first use unless injected,
    so tests and callers holding their own sessions can replace any of them.

    Example:
        pipeline = SdmxPipeline(Config())
        result = pipeline.run({"sdmx_api": url, "title": "Poverty headcount"})
        if result.success:
            print(result.service_item_id)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        sdmx_source: Optional[SdmxSource] = None,
        geometry_source: Optional[GeometrySource] = None,
        publisher: Optional[ItemPublisher] = None,
        builder: Optional[FeatureBuilder] = None,
        joiner: Optional[GeometryJoiner] = None,
    ):
        self.config = config
        self.remote: RemoteConfig = config.remote if config else RemoteConfig()
        self.publish_config: PublishConfig = config.publish if config else PublishConfig()

        self._sdmx_source = sdmx_source
        self._geometry_source = geometry_source
        self._publisher = publisher
        self.builder = builder or FeatureBuilder()
        self.joiner = joiner or GeometryJoiner()

    # ----------------------------
    # Collaborators
    # ----------------------------
    @property
    def sdmx_source(self) -> SdmxSource:
        if self._sdmx_source is None:
            self._sdmx_source = SdmxSource(remote=self.remote)
        return self._sdmx_source

    @property
    def geometry_source(self) -> GeometrySource:
        if self._geometry_source is None:
            self._geometry_source = GeometrySource(remote=self.remote)
        return self._geometry_source

    def _can_publish(self) -> bool:
        return self._publisher is not None or (self.config is not None and self.config.agol is not None)

    def get_publisher(self) -> ItemPublisher:
        """Publisher built from the configured ArcGIS Online credentials."""
        if self._publisher is None:
            if self.config is None:
                raise ValidationError("ArcGIS Online credentials are required to publish")
            try:
                token, user_content_url = self.config.get_publish_credentials()
            except ConfigurationError as e:
                raise ValidationError(str(e)) from e
            self._publisher = ItemPublisher(
                token,
                user_content_url,
                publish_config=self.publish_config,
                remote=self.remote,
            )
        return self._publisher

    # ----------------------------
    # Stages
    # ----------------------------
    @staticmethod
    def _run_stage(stage: PipelineStage, func: Callable[..., T], *args: Any) -> T:
        logger.debug(f"Stage {stage.value}: starting")
        try:
            return func(*args)
        except PipelineError as e:
            if e.stage is None:
                e.stage = stage.value
            raise

    def _validate(self, request: Union[PublishRequest, dict[str, Any]]) -> PublishRequest:
        if not isinstance(request, PublishRequest):
            try:
                request = PublishRequest(**request)
            except ModelValidationError as e:
                raise ValidationError(_model_error_message(e)) from e
            except TypeError as e:
                raise ValidationError(f"Invalid request: {e}") from e

        inputs = [i for i in (request.input_path, request.sdmx_api, request.raw_input) if i is not None]
        if len(inputs) != 1:
            raise ValidationError(
                "unable to process request. Provide exactly one of an input file, an SDMX API URL or raw input."
            )

        if request.sdmx_api and request.source_format == SourceFormat.CSV:
            raise ValidationError("CSV input must be uploaded as a file; it cannot be fetched from an SDMX API")

        if request.join_to_geographies:
            validate_join_fields(request.sdmx_field, request.geo_field)
            if bool(request.geographies_url) == bool(request.geographies_path):
                raise ValidationError(
                    "Provide exactly one of a geographies feature service URL or a geographies file when joining."
                )

        publishing = not (request.fields_only or request.dry_run)
        if publishing and not self._can_publish():
            raise ValidationError("ArcGIS Online credentials are required to publish")

        return request

    def _fetch(self, request: PublishRequest) -> RawInput:
        if request.input_path is not None:
            logger.info(f"Loading {request.source_format.value} input from {request.input_path}")
            return load_input_file(request.input_path, request.source_format)
        if request.sdmx_api:
            return self.sdmx_source.fetch(request.sdmx_api, request.source_format)
        return request.raw_input

    def _join(self, request: PublishRequest, collection: dict[str, Any]) -> JoinStats:
        if request.geographies_path is not None:
            geographies = load_geometry_file(request.geographies_path)
        else:
            values = unique_join_values(collection, request.sdmx_field)
            logger.info(f"Querying geometries for {len(values):,} unique {request.sdmx_field} values")
            geographies = self.geometry_source.query(request.geographies_url, request.geo_field, values)
        return self.joiner.join(collection, geographies, request.sdmx_field, request.geo_field)

    def _upload(self, request: PublishRequest, collection: dict[str, Any]) -> str:
        extent = collection_extent(collection)
        return self.get_publisher().add_item(collection, request.title, extent)

    # ----------------------------
    # Run
    # ----------------------------
    def run(self, request: Union[PublishRequest, dict[str, Any]]) -> PipelineResult:
        """
        Process one request.

        Returns:
            PipelineResult; on failure `stage`, `error_kind` and `message`
            describe what went wrong, plus any ids created before the failure
        """
        start_time = time.time()
        feature_count = 0
        join_stats: Optional[JoinStats] = None
        fields: list[dict[str, Any]] = []
        item_id: Optional[str] = None
        service_item_id: Optional[str] = None

        try:
            request = self._run_stage(PipelineStage.VALIDATE, self._validate, request)
            raw = self._run_stage(PipelineStage.FETCH, self._fetch, request)
            dataset = self._run_stage(PipelineStage.PARSE, parse, raw, request.source_format)
            collection = self._run_stage(PipelineStage.BUILD, self.builder.build, dataset)
            feature_count = len(collection["features"])
            fields = collection["metadata"]["fields"]

            if request.fields_only:
                logger.info(f"Fields only: {len(fields)} fields")
                return PipelineResult(success=True, feature_count=feature_count, fields=fields)

            if request.join_to_geographies:
                join_stats = self._run_stage(PipelineStage.JOIN, self._join, request, collection)

            if request.dry_run:
                logger.info(f"DRY RUN: built {feature_count:,} features for '{request.title}'; nothing uploaded")
                return PipelineResult(
                    success=True,
                    feature_count=feature_count,
                    join=join_stats,
                    fields=fields,
                    collection=collection,
                )

            item_id = self._run_stage(PipelineStage.UPLOAD, self._upload, request, collection)
            service_item_id = self._run_stage(
                PipelineStage.PUBLISH, self.get_publisher().publish_item, item_id, request.title
            )

            if request.metadata is not None and not request.metadata.is_empty():
                self._run_stage(
                    PipelineStage.ENRICH, self.get_publisher().update_item, service_item_id, request.metadata
                )

        except PipelineError as e:
            logger.error(f"Pipeline failed at {e.stage}: [{e.kind}] {e.message}")
            return PipelineResult.failure(
                e,
                item_id=item_id,
                service_item_id=service_item_id,
                feature_count=feature_count,
                join=join_stats,
                fields=fields,
            )

        if request.cleanup_paths:
            self._run_stage(PipelineStage.CLEANUP, cleanup_input_files, request.cleanup_paths)

        logger.info(
            f"Published '{request.title}' as {service_item_id} "
            f"({feature_count:,} features) in {format_duration(time.time() - start_time)}"
        )
        return PipelineResult(
            success=True,
            service_item_id=service_item_id,
            item_id=item_id,
            feature_count=feature_count,
            join=join_stats,
            fields=fields,
        )
