"""
Feed-Forward Neural Networks from Scratch

This package implements small feed-forward networks with hand-written
reverse-mode differentiation using only NumPy, plus the training loops
that drive them: single runs with checkpointing and multi runs that train
many independently initialized networks (optionally in parallel) and keep
the best one.

Modules:
    operation: Differentiable operations (weight multiply, bias add, dropout)
    activations: Activation functions and activation operations
    layers: Dense layers as fixed operation pipelines
    factory: Create operations and layers from a kind tag
    builders: Fluent builders with random parameter initialization
    loss: Loss functions (MSE)
    network: Feed-forward network and its builder
    optimizer: SGD with linear or exponential learning rate decay
    dataset: Train / tests / valid data and synthetic data generation
    estimate: Absolute and relative errors of outputs against targets
    train: Single and multi training runs
    log: Logging setup
    errors: Exception hierarchy
"""

__version__ = "1.0.0"
__author__ = "nnkit developers"
