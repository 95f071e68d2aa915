"""
Model components for the webcam controller.

Provides:
    - MobileNetFeatureExtractor: Frozen MobileNet trunk, image → activation
    - ControllerDataset: Growing (features, one-hot labels) store
    - ControllerHead: Dense classifier trained on stored activations
"""
