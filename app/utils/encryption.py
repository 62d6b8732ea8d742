import base64

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding


def generate_security_credential(initiator_password: str, cert_path: str) -> str:
    """
    Encrypt the initiator password with the M-PESA public certificate.

    The result is the SecurityCredential sent with B2B, reversal, status
    and balance requests.

    Args:
        initiator_password: Plain initiator password
        cert_path: Path to the PEM (or DER) certificate issued by Safaricom

    Returns:
        str: Base64 encoded RSA PKCS#1 v1.5 ciphertext
    """
    with open(cert_path, 'rb') as fh:
        cert_data = fh.read()

    if b'-----BEGIN CERTIFICATE-----' in cert_data:
        certificate = x509.load_pem_x509_certificate(cert_data)
    else:
        certificate = x509.load_der_x509_certificate(cert_data)

    ciphertext = certificate.public_key().encrypt(
        str(initiator_password).encode(),
        padding.PKCS1v15()
    )

    return base64.b64encode(ciphertext).decode()
