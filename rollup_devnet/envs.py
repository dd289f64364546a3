# Container environment keys understood by the devnet node images.
#
#  - DEVNET_ROLE                                 role the container should assume
#  - DEVNET_NETWORK_ID                           p2p network id of an execution node
#  - DEVNET_NODE_TYPE                            sync mode of an L2 engine (full/snap)
#  - DEVNET_LOG_LEVEL                            verbosity of the node under test
#  - DEVNET_BOOTNODE                             comma separated enode URLs for L2 peering
#  - DEVNET_L1_CHAIN_ID                          chain id of the settlement chain
#  - DEVNET_L1_CLIQUE_PERIOD                     clique block period of the settlement chain
#  - DEVNET_L2_CHAIN_ID                          chain id of the rollup chain
#  - DEVNET_JWT_SECRET                           engine API secret shared by engine and driver
#  - DEVNET_L1_RPC_ENDPOINT                      websocket rpc of the settlement engine
#  - DEVNET_L2_RPC_ENDPOINT                      websocket rpc of the rollup engine
#  - DEVNET_L2_ENGINE_ENDPOINT                   engine rpc of the rollup engine
#  - DEVNET_L1_ROLLUP_ADDRESS                    rollup contract on the settlement chain
#  - DEVNET_L2_ROLLUP_ADDRESS                    rollup contract on the rollup chain
#  - DEVNET_PROPOSER_PRIVATE_KEY                 proposer signing key
#  - DEVNET_SUGGESTED_FEE_RECIPIENT              fee recipient for proposed blocks
#  - DEVNET_PROPOSE_INTERVAL                     proposer interval, go duration syntax
#  - DEVNET_PRODUCE_INVALID_BLOCKS_INTERVAL      fault injection interval in seconds
#  - DEVNET_THROWAWAY_BLOCK_BUILDER_PRIVATE_KEY  driver key for throwaway blocks
#  - DEVNET_PROVER_PRIVATE_KEY                   prover signing key
#  - DEVNET_ENABLE_L2_P2P                        driver syncs through L2 peers
#  - DEVNET_CHECK_LIVE_PORT                      0 disables the runtime port check
#
# Contract deployer only:
#
#  - DEVNET_PRIVATE_KEY                          deployer private key
#  - DEVNET_L1_DEPLOYER_ADDRESS                  deployer address
#  - DEVNET_L2_GENESIS_BLOCK_HASH                genesis hash of the paired rollup engine
#  - DEVNET_MAINNET_URL                          http rpc of the settlement engine

ROLE = "DEVNET_ROLE"
NETWORK_ID = "DEVNET_NETWORK_ID"
NODE_TYPE = "DEVNET_NODE_TYPE"
LOG_LEVEL = "DEVNET_LOG_LEVEL"
BOOTNODE = "DEVNET_BOOTNODE"
L1_CHAIN_ID = "DEVNET_L1_CHAIN_ID"
L1_CLIQUE_PERIOD = "DEVNET_L1_CLIQUE_PERIOD"
L2_CHAIN_ID = "DEVNET_L2_CHAIN_ID"
JWT_SECRET = "DEVNET_JWT_SECRET"
L1_RPC_ENDPOINT = "DEVNET_L1_RPC_ENDPOINT"
L2_RPC_ENDPOINT = "DEVNET_L2_RPC_ENDPOINT"
L2_ENGINE_ENDPOINT = "DEVNET_L2_ENGINE_ENDPOINT"
L1_ROLLUP_ADDRESS = "DEVNET_L1_ROLLUP_ADDRESS"
L2_ROLLUP_ADDRESS = "DEVNET_L2_ROLLUP_ADDRESS"
PROPOSER_PRIVATE_KEY = "DEVNET_PROPOSER_PRIVATE_KEY"
SUGGESTED_FEE_RECIPIENT = "DEVNET_SUGGESTED_FEE_RECIPIENT"
PROPOSE_INTERVAL = "DEVNET_PROPOSE_INTERVAL"
PRODUCE_INVALID_BLOCKS_INTERVAL = "DEVNET_PRODUCE_INVALID_BLOCKS_INTERVAL"
THROWAWAY_BLOCK_BUILDER_PRIVATE_KEY = "DEVNET_THROWAWAY_BLOCK_BUILDER_PRIVATE_KEY"
PROVER_PRIVATE_KEY = "DEVNET_PROVER_PRIVATE_KEY"
ENABLE_L2_P2P = "DEVNET_ENABLE_L2_P2P"
CHECK_LIVE_PORT = "DEVNET_CHECK_LIVE_PORT"

PRIVATE_KEY = "DEVNET_PRIVATE_KEY"
L1_DEPLOYER_ADDRESS = "DEVNET_L1_DEPLOYER_ADDRESS"
L2_GENESIS_BLOCK_HASH = "DEVNET_L2_GENESIS_BLOCK_HASH"
MAINNET_URL = "DEVNET_MAINNET_URL"
