import asyncio
from io import BytesIO

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from pydicom.dataset import Dataset, FileMetaDataset
from pydicom.uid import ExplicitVRLittleEndian, SecondaryCaptureImageStorage


BOUNDARY = "dicom-share-boundary"


def make_record(study_uid=None, series_uid=None, sop_uid=None, instance_number=None):
    """DICOM JSON attribute record with the identity/ordering tags."""
    record = {}
    if study_uid is not None:
        record["0020000D"] = {"vr": "UI", "Value": [study_uid]}
    if series_uid is not None:
        record["0020000E"] = {"vr": "UI", "Value": [series_uid]}
    if sop_uid is not None:
        record["00080018"] = {"vr": "UI", "Value": [sop_uid]}
    if instance_number is not None:
        record["00200013"] = {"vr": "IS", "Value": [instance_number]}
    return record


def make_instance_bytes(study_uid, series_uid, sop_uid, instance_number=None):
    """Encode a tiny secondary-capture instance as a DICOM file."""
    ds = Dataset()
    ds.file_meta = FileMetaDataset()
    ds.file_meta.TransferSyntaxUID = ExplicitVRLittleEndian
    ds.file_meta.MediaStorageSOPClassUID = SecondaryCaptureImageStorage
    ds.file_meta.MediaStorageSOPInstanceUID = sop_uid

    ds.SOPClassUID = SecondaryCaptureImageStorage
    ds.SOPInstanceUID = sop_uid
    ds.StudyInstanceUID = study_uid
    ds.SeriesInstanceUID = series_uid
    if instance_number is not None:
        ds.InstanceNumber = instance_number
    ds.Modality = "OT"
    ds.Rows = 2
    ds.Columns = 2
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.BitsAllocated = 8
    ds.BitsStored = 8
    ds.HighBit = 7
    ds.PixelRepresentation = 0
    ds.PixelData = bytes([0, 1, 2, 3])

    buffer = BytesIO()
    ds.save_as(buffer, enforce_file_format=True)
    return buffer.getvalue()


def multipart_body(parts, boundary=BOUNDARY):
    body = b""
    for part in parts:
        body += f"--{boundary}\r\nContent-Type: application/dicom\r\n\r\n".encode()
        body += part + b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return body


class FakeShare:
    """
    In-memory share backend served through aiohttp.web.

    ``studies`` maps study UID -> series UID -> list of (sop_uid, instance_number).
    """

    def __init__(
        self,
        target_type="study",
        targets=None,
        studies=None,
        token="tok",
        password="",
        failing_series=(),
        failing_instances=(),
        corrupt_instances=(),
        delays=None,
        shared_series=None,
        shared_instances=None,
    ):
        self.target_type = target_type
        self.targets = targets if targets is not None else []
        self.studies = studies or {}
        self.token = token
        self.password = password
        self.failing_series = set(failing_series)
        self.failing_instances = set(failing_instances)
        self.corrupt_instances = set(corrupt_instances)
        self.delays = delays or {}
        self.shared_series = shared_series
        self.shared_instances = shared_instances
        self.requests = []
        self.instance_requests = []
        self.completed_instances = []
        self.events = []

    def _instance_numbers(self):
        return {
            sop: number
            for series_map in self.studies.values()
            for instances in series_map.values()
            for sop, number in instances
        }

    def _check(self, request):
        self.requests.append(request.path_qs)
        if request.match_info["token"] != self.token:
            return web.json_response({"ok": False, "error": "Share link not found"}, status=404)
        if self.password and request.query.get("password") != self.password:
            return web.json_response({"ok": False, "error": "Invalid password"}, status=403)
        return None

    async def share_info(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        return web.json_response(
            {
                "ok": True,
                "data": {
                    "targetType": self.target_type,
                    "targets": [{"targetId": target} for target in self.targets],
                },
            }
        )

    async def study_series(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        study = request.match_info["study"]
        if study not in self.studies:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(
            [make_record(study, series) for series in self.studies[study]]
        )

    async def share_series(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        pairs = self.shared_series
        if pairs is None:
            pairs = [(study, series) for study, series_map in self.studies.items() for series in series_map]
        return web.json_response([make_record(study, series) for study, series in pairs])

    async def series_instances(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        study = request.match_info["study"]
        series = request.match_info["series"]
        if series in self.failing_series:
            return web.Response(status=500, text="listing failed")
        instances = self.studies.get(study, {}).get(series, [])
        return web.json_response(
            [make_record(study, series, sop, number) for sop, number in instances]
        )

    async def share_instances(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        records = self.shared_instances
        if records is None:
            records = [
                make_record(study, series, sop, number)
                for study, series_map in self.studies.items()
                for series, instances in series_map.items()
                for sop, number in instances
            ]
        return web.json_response(records)

    async def instance(self, request):
        denied = self._check(request)
        if denied is not None:
            return denied
        study = request.match_info["study"]
        series = request.match_info["series"]
        sop = request.match_info["sop"]
        self.instance_requests.append(sop)
        self.events.append(("request", sop))

        delay = self.delays.get(sop)
        if delay:
            await asyncio.sleep(delay)

        try:
            if sop in self.failing_instances:
                return web.Response(status=500, reason="Internal Server Error")
            if sop in self.corrupt_instances:
                body = multipart_body([b"not a dicom file"])
            else:
                number = self._instance_numbers().get(sop)
                body = multipart_body([make_instance_bytes(study, series, sop, number)])
            return web.Response(
                body=body,
                headers={
                    "Content-Type": f'multipart/related; type="application/dicom"; boundary={BOUNDARY}'
                },
            )
        finally:
            self.completed_instances.append(sop)
            self.events.append(("complete", sop))

    def make_app(self):
        app = web.Application()
        prefix = "/api/share/{token}"
        app.router.add_get(prefix, self.share_info)
        app.router.add_get(prefix + "/series", self.share_series)
        app.router.add_get(prefix + "/instances", self.share_instances)
        app.router.add_get(prefix + "/studies/{study}/series", self.study_series)
        app.router.add_get(prefix + "/studies/{study}/series/{series}/instances", self.series_instances)
        app.router.add_get(
            prefix + "/studies/{study}/series/{series}/instances/{sop}", self.instance
        )
        return app


def run_against(share, scenario):
    """Run ``await scenario(base_url)`` with ``share`` served on a local port."""

    async def main():
        async with TestServer(share.make_app()) as server:
            base_url = f"http://{server.host}:{server.port}"
            return await scenario(base_url)

    return asyncio.run(main())


@pytest.fixture
def two_series_study():
    """One study with two series of 5 and 3 instances, listed out of order."""
    return FakeShare(
        target_type="study",
        targets=["1.2.3"],
        studies={
            "1.2.3": {
                "1.2.3.1": [
                    ("1.2.3.1.3", 3),
                    ("1.2.3.1.5", 5),
                    ("1.2.3.1.1", 1),
                    ("1.2.3.1.4", 4),
                    ("1.2.3.1.2", 2),
                ],
                "1.2.3.2": [
                    ("1.2.3.2.2", 2),
                    ("1.2.3.2.1", 1),
                    ("1.2.3.2.3", 3),
                ],
            }
        },
    )
