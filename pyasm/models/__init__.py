"""
Model persistence
"""

from .npz_loader import load_model, save_model

__all__ = ['load_model', 'save_model']
