"""Utility scripts for operating the model host.

Scripts include:
- ``load_model.py``: load one model version into an ONNX Runtime backend and
  report its execution contexts.
"""
