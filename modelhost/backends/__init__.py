"""Backend construction for hosted models.

Primary components:
- ``base``: abstract ``InferenceBackend``/``BackendFactory`` and the errors
  every construction step reports.
- ``artifacts``: resolves a model directory into an ``ArtifactMap``.
- ``loader``: reference-counted lifecycle of the native runtime.
- ``onnx_backend``: ONNX Runtime backend and its execution contexts.
- ``factory``: helpers to construct a backend factory for a platform.

Guidance:
- Prefer ``factory.create_backend_factory`` so hosts remain decoupled from
  specific runtimes.
"""
