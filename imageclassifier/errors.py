class ImageClassifierError(Exception):
    code = "ImageClassifier"


class DataSourceError(ImageClassifierError, ValueError):
    code = "DataSource"


class UnknownPretrainedNetworkError(ImageClassifierError, ValueError):
    code = "UnknownPretrainedNetwork"


class NetworkValidationError(ImageClassifierError):
    code = "NetworkValidation"


class NoWorkspaceVariableError(NetworkValidationError, LookupError):
    code = "NoWorkspaceVar"


class NotANetworkError(NetworkValidationError, TypeError):
    code = "NotADLNetwork"


class UninitializedNetworkError(NetworkValidationError, ValueError):
    code = "UninitializedNetwork"


class UnableToPredictError(NetworkValidationError, ValueError):
    code = "UnableToPredict"


class NetworkOutputFormatError(NetworkValidationError, ValueError):
    code = "FormatError"


class WrongNumClassesError(NetworkValidationError, ValueError):
    code = "WrongNumClasses"


class UnknownTrainingOptionError(ImageClassifierError, ValueError):
    code = "UnknownTrainingOption"


class TrainingPreconditionError(ImageClassifierError, RuntimeError):
    code = "TrainingPrecondition"


class TrainingExecutionError(ImageClassifierError, RuntimeError):
    code = "TrainingExecution"


class NoTrainedNetworkError(ImageClassifierError, RuntimeError):
    code = "NoTrainedNetwork"


class UnknownTechniqueError(ImageClassifierError, ValueError):
    code = "UnknownTechnique"
