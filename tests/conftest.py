"""
Shared fixtures for the EPG guide service tests.
"""
import gzip

import pytest

from epg_guide.services.source_merger import SourceMergePipeline

from xmltv_samples import BBC_ONE_XML


@pytest.fixture
def bbc_one_xml() -> str:
    return BBC_ONE_XML


@pytest.fixture
def gzipped_bbc_one() -> bytes:
    return gzip.compress(BBC_ONE_XML.encode("utf-8"))


@pytest.fixture
def pipeline_factory(tmp_path):
    """Build merge pipelines that stage into the test's temp directory."""

    def factory(sources, fetcher, **overrides):
        options = {
            "min_source_bytes": 16,
            "fetch_timeout_seconds": 5,
            "parse_timeout_seconds": 0,
            "staging_root": tmp_path / "staging",
        }
        options.update(overrides)
        return SourceMergePipeline(sources, fetcher, **options)

    return factory
