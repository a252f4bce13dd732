"""Tests for the BaseService operation decorator and transaction helper."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ServiceException
from app.services.base import BaseService


class _SampleService(BaseService):
    @BaseService.measure_operation("do_work")
    def do_work(self, fail: bool = False) -> str:
        if fail:
            raise ValueError("bad input")
        return "done"


class TestMeasureOperation:
    @patch("app.services.base.prometheus_metrics")
    def test_success_is_recorded(self, mock_metrics, db):
        assert _SampleService(db).do_work() == "done"

        kwargs = mock_metrics.record_service_operation.call_args.kwargs
        assert kwargs["service"] == "_SampleService"
        assert kwargs["operation"] == "do_work"
        assert kwargs["status"] == "success"

    @patch("app.services.base.prometheus_metrics")
    def test_error_type_is_recorded_and_raised(self, mock_metrics, db):
        with pytest.raises(ValueError):
            _SampleService(db).do_work(fail=True)

        kwargs = mock_metrics.record_service_operation.call_args.kwargs
        assert kwargs["status"] == "error"
        assert kwargs["error_type"] == "ValueError"

    def test_operation_name_is_kept_on_the_function(self):
        assert _SampleService.do_work._operation_name == "do_work"


class TestTransaction:
    def test_database_error_becomes_service_exception(self, db):
        service = _SampleService(db)

        with pytest.raises(ServiceException):
            with service.transaction():
                raise SQLAlchemyError("deadlock")
