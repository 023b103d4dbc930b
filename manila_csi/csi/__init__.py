"""Container Storage Interface protocol bindings.

Message and service modules are generated from the bundled ``csi.proto``
when this package is first imported.
"""

import grpc

CSI_SPEC_VERSION = "1.2.0"

csi_pb2, csi_pb2_grpc = grpc.protos_and_services("manila_csi/csi/csi.proto")
