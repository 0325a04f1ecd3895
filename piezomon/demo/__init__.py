"""Synthetic data source used while no device is attached."""

from piezomon.demo.generator import DemoGenerator

__all__ = ["DemoGenerator"]
