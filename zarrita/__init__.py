# flake8: noqa
from zarrita.codecs import register_codec
from zarrita.config import RuntimeConfiguration, runtime_configuration
from zarrita.core import Array
from zarrita.errors import (BadCompressorError, BoundsCheckError, ContainsArrayError,
                            ContainsGroupError, MetadataError, NegativeStepError,
                            NodeNotFoundError)
from zarrita.hierarchy import (ExplicitGroup, Group, Hierarchy, ImplicitGroup, Node,
                               NodeKind, create_hierarchy, create_hierarchy_async,
                               get_hierarchy, get_hierarchy_async)
from zarrita.storage import (KVStore, ListDirResult, LocalStore, MemoryStore, RemoteStore,
                             Store)
from zarrita.version import version as __version__
