"""Transfer learning with a pre-trained VGG16 on invasive species and CIFAR-10."""

__version__ = "0.1.0"
