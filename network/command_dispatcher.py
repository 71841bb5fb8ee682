import base64
import dataclasses
import logging

from core.errors import ImageLensError
from core.image_service import ImageService
from core.models import ThumbnailResult
from network import protocol

logger = logging.getLogger(__name__)


def _payload(result: ThumbnailResult) -> protocol.ThumbnailPayload:
    return protocol.ThumbnailPayload(
        data=base64.b64encode(result.data).decode("ascii"),
        width=result.width,
        height=result.height,
        mime_type=result.mime_type,
    )


class CommandDispatcher:
    """Maps JSON command dicts from a UI onto ImageService calls.

    Every failure comes back as an ErrorResponse carrying one descriptive
    message; nothing raises across this boundary.
    """

    def __init__(self, service: ImageService):
        self.service = service

    async def handle_request(self, request_data: dict) -> str:
        """Validate and dispatch one request, returning the JSON response."""
        try:
            if not isinstance(request_data, dict):
                return protocol.ErrorResponse(message="Request must be a JSON object.").model_dump_json()
            command = request_data.get("command")
            if not command:
                return protocol.ErrorResponse(message="Request missing 'command' field.").model_dump_json()

            response_model = await self._dispatch_command(command, request_data)
            return response_model.model_dump_json()

        except protocol.ValidationError as e:
            return protocol.ErrorResponse(message=f"Validation Error: {e}").model_dump_json()
        except ImageLensError as e:
            logger.info(f"Request {request_data.get('command')!r} failed: {e}")
            return protocol.ErrorResponse(message=f"{type(e).__name__}: {e}").model_dump_json()
        except Exception as e:
            logger.error(f"Error processing request: {e}", exc_info=True)
            return protocol.ErrorResponse(message=f"Internal Server Error: {str(e)}").model_dump_json()

    async def _dispatch_command(self, command: str, request_data: dict) -> protocol.Response:
        """Dispatches commands to the appropriate handler."""
        if command == "read_metadata":
            req = protocol.validate_request(protocol.ReadMetadataRequest, request_data)
            metadata = await self.service.read_metadata(req.path)
            return protocol.ReadMetadataResponse(metadata=metadata)

        elif command == "read_metadata_batch":
            req = protocol.validate_request(protocol.ReadMetadataBatchRequest, request_data)
            logger.info(f"read_metadata_batch for {len(req.paths)} paths")
            resp = protocol.ReadMetadataBatchResponse()
            for item in await self.service.read_metadata_batch(req.paths):
                if item.error is not None:
                    resp.errors[item.path] = item.error
                else:
                    resp.metadata[item.path] = item.value
            return resp

        elif command == "generate_thumbnail":
            req = protocol.validate_request(protocol.GenerateThumbnailRequest, request_data)
            overrides = {k: v for k, v in (("size", req.size), ("quality", req.quality), ("format", req.format))
                         if v is not None}
            config = dataclasses.replace(self.service.thumbnail_config, **overrides)
            result = await self.service.load_thumbnail(req.path, config)
            return protocol.GenerateThumbnailResponse(thumbnail=_payload(result))

        elif command == "thumbnail_batch":
            req = protocol.validate_request(protocol.ThumbnailBatchRequest, request_data)
            logger.info(f"thumbnail_batch for {len(req.paths)} paths")
            resp = protocol.ThumbnailBatchResponse()
            for item in await self.service.generate_thumbnails_batch(req.paths):
                if item.error is not None:
                    resp.errors[item.path] = item.error
                else:
                    resp.thumbnails[item.path] = _payload(item.value)
            return resp

        elif command == "write_rating":
            req = protocol.validate_request(protocol.WriteRatingRequest, request_data)
            await self.service.write_rating(req.path, req.rating)
            return protocol.Response(message=f"Rating {req.rating} written to {req.path}")

        elif command == "clear_thumbnail_cache":
            removed = await self.service.clear_thumbnail_cache()
            return protocol.ClearThumbnailCacheResponse(removed=removed)

        return protocol.ErrorResponse(message=f"Unknown command: {command}")
