from .annotation import AnnotationDataset, load_annotation

__all__ = ["AnnotationDataset", "load_annotation"]
