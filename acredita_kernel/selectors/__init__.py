from acredita_kernel.selectors.credential_selector import CredentialSelector
from acredita_kernel.selectors.print_selector import PrintSelector
from acredita_kernel.selectors.request_selector import RequestSelector

__all__ = ["CredentialSelector", "PrintSelector", "RequestSelector"]
