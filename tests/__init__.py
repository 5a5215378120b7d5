"""apm-traceable test suite.

Test organization:
- unit/test_naming.py: trace name derivation and controller fallback
- unit/test_runner.py: span bracketing, option precedence, tracer failures
- unit/test_instrument.py: method registration and wrapper transparency
- unit/test_backends.py: OpenTelemetry and Datadog backends
- unit/test_scenarios.py: end-to-end spans through the OpenTelemetry SDK
- unit/test_config.py, test_env.py, test_errors.py, test_logging.py: ambient stack
"""
