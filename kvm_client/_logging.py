import logging

logger = logging.getLogger("kvm_client")
