class Config:
    DATASET = None
    IMG_SIZE = 224
    BATCH_SIZE = 32
    EPOCHS = 10
    FINE_TUNE_EPOCHS = 5
    LEARNING_RATE = 0.0001
    FINE_TUNE_LEARNING_RATE = 0.00001
    NUM_CLASSES = 2
    CLASS_NAMES = ()
    DENSE_UNITS = 256
    DROPOUT = 0.5
    # block5 of VGG16: three convolutions and the pooling layer
    FINE_TUNE_LAYERS = 4
    WEIGHTS = "imagenet"
    VALIDATION_SPLIT = 0.1
    TEST_SPLIT = 0.1
    SEED = 42
    SHUFFLE_BUFFER = 1000
    AUGMENT = True
    MIXED_PRECISION = False
    DATA_DIR = "data"
    CHECKPOINT_PATH = "checkpoints/"
    OUTPUT_DIR = "outputs/"
    MODEL_NAME = "vgg16_transfer"

    @classmethod
    def is_binary(cls):
        return cls.NUM_CLASSES == 2

    @classmethod
    def override(cls, **values):
        """Return a config class with the given constants replaced"""
        attrs = {}
        for key, value in values.items():
            name = key.upper()
            if not name.isupper() or not hasattr(cls, name):
                raise ValueError(f"Unknown config key: {key}")
            attrs[name] = value
        return type(cls.__name__, (cls,), attrs)


class InvasiveSpeciesConfig(Config):
    DATASET = "invasive_species"
    IMG_SIZE = 224
    NUM_CLASSES = 2
    CLASS_NAMES = ("non_invasive", "invasive")
    KAGGLE_COMPETITION = "invasive-species-monitoring"
    LABELS_FILE = "train_labels.csv"
    MODEL_NAME = "vgg16_invasive_species"


class Cifar10Config(Config):
    DATASET = "cifar10"
    IMG_SIZE = 64
    BATCH_SIZE = 64
    NUM_CLASSES = 10
    CLASS_NAMES = (
        "airplane",
        "automobile",
        "bird",
        "cat",
        "deer",
        "dog",
        "frog",
        "horse",
        "ship",
        "truck",
    )
    TEST_SPLIT = 0.0
    MODEL_NAME = "vgg16_cifar10"


CONFIGS = {
    InvasiveSpeciesConfig.DATASET: InvasiveSpeciesConfig,
    Cifar10Config.DATASET: Cifar10Config,
}


def get_config(name):
    """Look up the config class for a dataset name"""
    try:
        return CONFIGS[name]
    except KeyError:
        raise ValueError(
            f"Unknown dataset: {name}. Expected one of {sorted(CONFIGS)}"
        ) from None
