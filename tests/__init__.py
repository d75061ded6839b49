"""
Test suite for the Survey Export service.

This package contains all tests for the survey_export application.

Test Structure:
- test_config.py / test_errors.py / test_models.py: Configuration, error taxonomy, data models
- test_launcher.py / test_locators.py / test_observer.py: Browser layer
- test_authenticator.py: Login flow and session verification
- test_capture.py: Export capture state machine
- test_uploader.py / test_notifier.py: Storage and email clients
- test_pipeline.py: End-to-end scenarios with fake browser and backends
- test_handler.py / test_web.py / test_cli.py: Invocation handler, HTTP surface and CLI
- test_log_setup.py: Request-scoped logging
- test_export_integration.py: Real Chromium against tests/mock_server.py

Run all tests:
    pytest tests/ -v

Run integration tests:
    pytest tests/ -v -m integration
"""
