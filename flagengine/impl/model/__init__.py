from flagengine.impl.model.entity import ModelEntity
from flagengine.impl.model.flag_definition import *
