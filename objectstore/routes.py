from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel

from objectstore.errors import AlreadyExists, Conflict, InvalidInput, NotFound, ObjectStoreError, StoreError
from objectstore.models import ObjectVersion, Owner
from objectstore.service import ObjectStorageService
from objectstore.validation import validate_content_length

router = APIRouter()

S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"
META_HEADER_PREFIX = "x-amz-meta-"

STATUS_BY_ERROR = [
    (NotFound, 404),
    (AlreadyExists, 409),
    (Conflict, 409),
    (InvalidInput, 400),
    (StoreError, 503),
]


def status_for(exc: ObjectStoreError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def get_storage(request: Request) -> ObjectStorageService:
    return request.app.state.storage


# --- Helpers ---
def generate_xml_response(content: str, status_code: int = 200):
    return Response(content=content, media_type="application/xml", status_code=status_code)


def get_iso_timestamp(dt: datetime):
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def owner_xml() -> str:
    return f'<Owner><ID>{Owner.ID}</ID><DisplayName>{Owner.DisplayName}</DisplayName></Owner>'


def version_headers(version: ObjectVersion) -> dict:
    return {
        "x-amz-version-id": str(version.version_number),
        "ETag": version.etag,
    }


# --- Version metadata API (JSON) ---

class MetadataValue(BaseModel):
    value: Optional[str] = None


@router.get("/_api/versions/{version_id}/metadata")
async def list_metadata(version_id: int, storage: ObjectStorageService = Depends(get_storage)):
    return storage.list_metadata(version_id)


@router.delete("/_api/versions/{version_id}/metadata")
async def clear_metadata(version_id: int, storage: ObjectStorageService = Depends(get_storage)):
    return {"removed": storage.clear_metadata(version_id)}


@router.get("/_api/versions/{version_id}/metadata/{meta_key}")
async def get_metadata(version_id: int, meta_key: str, storage: ObjectStorageService = Depends(get_storage)):
    return {"key": meta_key, "value": storage.get_metadata(version_id, meta_key)}


@router.put("/_api/versions/{version_id}/metadata/{meta_key}")
async def set_metadata(
    version_id: int,
    meta_key: str,
    body: MetadataValue,
    storage: ObjectStorageService = Depends(get_storage),
):
    entry = storage.set_metadata(version_id, meta_key, body.value)
    return {"key": entry.meta_key, "value": entry.meta_value}


@router.delete("/_api/versions/{version_id}/metadata/{meta_key}")
async def delete_metadata(version_id: int, meta_key: str, storage: ObjectStorageService = Depends(get_storage)):
    storage.delete_metadata(version_id, meta_key)
    return Response(status_code=204)


@router.get("/_api/verify")
async def verify_object(
    bucket: str,
    key: str,
    versionId: Optional[int] = None,
    storage: ObjectStorageService = Depends(get_storage),
):
    return {"bucket": bucket, "key": key, "intact": storage.verify_object(bucket, key, versionId)}


# --- Bucket Operations ---

@router.get("/")
async def list_buckets(storage: ObjectStorageService = Depends(get_storage)):
    xml_parts = [
        f'<ListAllMyBucketsResult xmlns="{S3_NS}">',
        owner_xml(),
        '<Buckets>',
    ]
    for bucket in storage.list_buckets():
        xml_parts.append(
            f'<Bucket><Name>{escape(bucket.name)}</Name>'
            f'<CreationDate>{get_iso_timestamp(bucket.created_at)}</CreationDate></Bucket>'
        )
    xml_parts.append('</Buckets></ListAllMyBucketsResult>')
    return generate_xml_response("".join(xml_parts))


@router.put("/{bucket_name}")
async def create_bucket(bucket_name: str, storage: ObjectStorageService = Depends(get_storage)):
    storage.create_bucket(bucket_name)
    return Response(status_code=200, headers={"Location": f"/{bucket_name}"})


@router.delete("/{bucket_name}")
async def delete_bucket(bucket_name: str, storage: ObjectStorageService = Depends(get_storage)):
    storage.delete_bucket(bucket_name)
    return Response(status_code=204)


@router.get("/{bucket_name}")
async def list_objects(
    bucket_name: str,
    versions: bool = False,
    storage: ObjectStorageService = Depends(get_storage),
):
    if versions:
        results = storage.list_bucket_versions(bucket_name)

        xml_parts = [
            f'<ListVersionsResult xmlns="{S3_NS}">',
            f'<Name>{escape(bucket_name)}</Name>',
            '<Prefix></Prefix>',
            '<KeyMarker></KeyMarker>',
            '<VersionIdMarker></VersionIdMarker>',
            '<IsTruncated>false</IsTruncated>',
        ]
        for obj, ver in results:
            xml_parts.append(
                f'<Version><Key>{escape(obj.key)}</Key><VersionId>{ver.version_number}</VersionId>'
                f'<IsLatest>{str(ver.is_latest).lower()}</IsLatest>'
                f'<LastModified>{get_iso_timestamp(ver.created_at)}</LastModified>'
                f'<ETag>{escape(ver.etag)}</ETag><Size>{ver.size}</Size>{owner_xml()}'
                f'<StorageClass>STANDARD</StorageClass></Version>'
            )
        xml_parts.append('</ListVersionsResult>')
        return generate_xml_response("".join(xml_parts))

    # Current versions only
    results = storage.list_bucket_versions(bucket_name, latest_only=True)

    xml_parts = [
        f'<ListBucketResult xmlns="{S3_NS}">',
        f'<Name>{escape(bucket_name)}</Name>',
        '<Prefix></Prefix>',
        '<Marker></Marker>',
        f'<KeyCount>{len(results)}</KeyCount>',
        '<IsTruncated>false</IsTruncated>',
    ]
    for obj, ver in results:
        xml_parts.append(
            f'<Contents><Key>{escape(obj.key)}</Key>'
            f'<LastModified>{get_iso_timestamp(ver.created_at)}</LastModified>'
            f'<ETag>{escape(ver.etag)}</ETag><Size>{ver.size}</Size>{owner_xml()}'
            f'<StorageClass>STANDARD</StorageClass></Contents>'
        )
    xml_parts.append('</ListBucketResult>')
    return generate_xml_response("".join(xml_parts))


# --- Object Operations ---

@router.put("/{bucket_name}/{key:path}")
async def put_object(
    bucket_name: str,
    key: str,
    request: Request,
    storage: ObjectStorageService = Depends(get_storage),
):
    validate_content_length(request.headers.get("content-length"), storage.settings.max_object_size)
    # Whole body in memory; streaming uploads are not supported
    body = await request.body()
    content_type = request.headers.get("content-type")
    metadata = {
        name[len(META_HEADER_PREFIX):]: value
        for name, value in request.headers.items()
        if name.lower().startswith(META_HEADER_PREFIX)
    }

    version = storage.put_object(bucket_name, key, body, content_type, metadata=metadata)
    return Response(status_code=200, headers=version_headers(version))


@router.get("/{bucket_name}/{key:path}")
async def get_object(
    bucket_name: str,
    key: str,
    versionId: Optional[int] = None,
    storage: ObjectStorageService = Depends(get_storage),
):
    obj, metadata = storage.read_object(bucket_name, key, versionId)

    headers = version_headers(obj)
    for meta_key, meta_value in metadata.items():
        headers[f"{META_HEADER_PREFIX}{meta_key}"] = meta_value or ""
    # Served exactly as stored; media_type would get a charset appended for text/*
    headers["content-type"] = obj.content_type

    return Response(content=obj.content, headers=headers)


@router.post("/{bucket_name}/{key:path}")
async def restore_object_version(
    bucket_name: str,
    key: str,
    versionId: int = Query(..., description="Version to copy forward as the new current version"),
    storage: ObjectStorageService = Depends(get_storage),
):
    version = storage.restore_version(bucket_name, key, versionId)
    headers = version_headers(version)
    headers["x-amz-restored-from-version-id"] = str(versionId)
    return Response(status_code=200, headers=headers)


@router.delete("/{bucket_name}/{key:path}")
async def delete_object(
    bucket_name: str,
    key: str,
    versionId: Optional[int] = None,
    storage: ObjectStorageService = Depends(get_storage),
):
    if versionId is None:
        storage.delete_object(bucket_name, key)
        return Response(status_code=204)

    storage.delete_version(bucket_name, key, versionId)
    return Response(status_code=204, headers={"x-amz-version-id": str(versionId)})
