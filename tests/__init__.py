"""Tests for model hosting components.

These tests run against an in-process stand-in for the native runtime and
temporary model directories, so no GPU or ONNX Runtime install is needed.
"""
