from typing import NewType

Address = NewType('Address', str)
HexStr = NewType('HexStr', str)
TransactionHash = NewType('TransactionHash', str)
