"""
Training package for the controller head.

Provides:
    - ControllerTrainer: Adam + cross-entropy fit on collected activations
    - batch_size_for: Batch size derived from the example count
"""
